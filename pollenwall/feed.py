"""
Remote Feed Client

The polling loop only needs two things from the remote generation service: the list of
pollens it currently knows about, and the bytes of an artifact. FeedClient describes that
interface and IpfsFeedClient implements it on top of the HTTP API of the Pollinations IPFS
node (https://docs.ipfs.tech/reference/kubo/rpc/).

How pollens are discovered on the node:

- the service announces pollens on two pubsub topics, "processing_pollen" and "done_pollen".
  Every message carries the content hash of a pollen folder, base64 encoded. Messages
  containing "HEARTBEAT" are keep-alives and are dropped.
- <folder>/input is the pollen's input block; its key is the pollen id, which stays the
  same while the folder hash changes with every new iteration of the pollen.
- <folder>/output holds the numbered images produced so far (00001.jpg, 00002.jpg, ...);
  the highest number is the latest one.
- <pollen id>/text_input and <pollen id>/model hold the prompt and the model name.

Pubsub keeps no history: a message is only delivered to subscriptions open at the time it is
published. The client therefore holds one subscription per topic open for the whole run, each
read by a background thread into a buffer. list_pollens() drains those buffers and reports the
pollens announced since the previous call.
"""

import json
import base64
import binascii
import logging
import threading
from collections import OrderedDict
from typing import Optional, Protocol

import requests

from pollenwall.models import Model, PollenStatus, RemotePollenSummary

logger = logging.getLogger(__name__)

PROCESSING_TOPIC = "processing_pollen"
DONE_TOPIC = "done_pollen"
HEARTBEAT = "HEARTBEAT"

TOPICS = {
    PROCESSING_TOPIC: PollenStatus.PROCESSING,
    DONE_TOPIC: PollenStatus.DONE,
}

METADATA_CACHE_SIZE = 256


class FeedError(Exception):
    """Base class for errors raised by feed clients."""

    pass


class FeedNetworkError(FeedError):
    """Raised when the node cannot be reached or fails to answer. Transient."""

    pass


class FeedParseError(FeedError):
    """Raised when the node answers with something that cannot be understood."""

    pass


class FeedNotFoundError(FeedError):
    """Raised when a referenced pollen file or artifact is not available (anymore)."""

    pass


class FeedClient(Protocol):
    def list_pollens(self) -> list[RemotePollenSummary]:
        ...

    def fetch_artifact(self, ref: str) -> bytes:
        ...


def decode_message(data: str) -> str:
    """
    Decode the data field of a pubsub message. Older nodes send plain padded base64, newer
    ones multibase base64url which is marked by a leading 'u' and has no padding.
    """

    try:
        return base64.b64decode(data, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        pass

    if data.startswith("u"):
        encoded = data[1:] + "=" * (-len(data[1:]) % 4)
        try:
            return base64.urlsafe_b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            pass

    raise FeedParseError(f"Could not decode pubsub message data: {data!r}")


def parse_message(line: bytes) -> str:
    """Decode one line of a pubsub stream into the announced message."""

    try:
        message = json.loads(line)
        return decode_message(message["data"])
    except (ValueError, KeyError, TypeError) as error:
        raise FeedParseError(f"Malformed pubsub message {line[:80]!r}: {error}")


def latest_image(links: list) -> Optional[tuple[str, str]]:
    """
    Pick the latest image from the links of an output folder. Images are named with a running
    number, e.g. 'processing_00005.jpg', so the latest is the .jpg with the highest number.
    Returns (hash, name), or None if the folder has no numbered image.
    """

    latest = None
    latest_number = -1

    for link in links:
        name = link.get("Name", "")
        digits = "".join(char for char in name if char.isdigit())
        if ".jpg" not in name or not digits:
            continue
        if int(digits) > latest_number:
            latest_number = int(digits)
            latest = (link["Hash"], name)

    return latest


class Subscription:
    """
    A pubsub subscription to one topic, read on a daemon thread until it is closed or the
    stream breaks. Announced folder hashes pile up in a buffer until drained.

    When the thread ends on its own, error says why; the subscription is then dead and has
    to be replaced.
    """

    def __init__(self, client: "IpfsFeedClient", topic: str):
        self.client = client
        self.topic = topic
        self.error: Optional[Exception] = None
        self.thread = threading.Thread(
            target=self._read, name=f"pollenwall-{topic}", daemon=True
        )
        self._folders: list[str] = []
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._response = None

    @property
    def alive(self) -> bool:
        return self.thread.is_alive()

    def start(self) -> "Subscription":
        self.thread.start()
        return self

    def drain(self) -> list[str]:
        """Return the folders announced since the last drain, in order of arrival."""

        with self._lock:
            folders, self._folders = self._folders, []
        return folders

    def close(self) -> None:
        self._closed.set()
        response = self._response
        if response is not None:
            # unblocks the reading thread
            response.close()

    def _read(self) -> None:
        try:
            self._response = self.client.open_stream(self.topic)
            if self._closed.is_set():
                self._response.close()
                return

            with self._response as response:
                for line in response.iter_lines():
                    if self._closed.is_set():
                        return
                    if line:
                        self._receive(line)

            if not self._closed.is_set():
                self.error = FeedNetworkError(f"the node ended the '{self.topic}' stream")

        except FeedError as error:
            self.error = error

        except requests.exceptions.RequestException as error:
            if not self._closed.is_set():
                self.error = FeedNetworkError(f"lost the '{self.topic}' stream: {error}")

    def _receive(self, line: bytes) -> None:
        try:
            message = parse_message(line)
        except FeedParseError as error:
            logger.warning("%s", error)
            return

        if HEARTBEAT in message:
            return

        with self._lock:
            self._folders.append(message)


class IpfsFeedClient:
    """
    Feed client for the HTTP API of an IPFS node. api_url is the API base url, e.g.
    http://65.108.44.19:5005/api/v0 (see config.parse_address).

    The first call to list_pollens() subscribes to both topics and gives the subscriptions
    listen_window seconds to deliver before reporting. Call close() when done polling.
    """

    def __init__(
        self,
        api_url: str,
        listen_window: float = 5.0,
        timeout: float = 30.0,
        session: requests.Session = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.listen_window = listen_window
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.subscriptions: dict[str, Subscription] = {}
        self._pending: dict[str, list[str]] = {topic: [] for topic in TOPICS}
        self._metadata_cache: "OrderedDict[str, tuple]" = OrderedDict()
        self._closing = threading.Event()

    def subscribe(self) -> None:
        """Open a subscription for every topic that has none yet."""

        for topic in TOPICS:
            if topic not in self.subscriptions:
                self.subscriptions[topic] = Subscription(self, topic).start()

    def close(self) -> None:
        self._closing.set()
        for subscription in self.subscriptions.values():
            subscription.close()
        self.subscriptions.clear()

    def list_pollens(self) -> list[RemotePollenSummary]:
        if not self.subscriptions:
            self.subscribe()
            self._closing.wait(self.listen_window)

        self._check_subscriptions()

        summaries: dict[str, RemotePollenSummary] = {}
        resolved: dict[tuple[str, PollenStatus], Optional[RemotePollenSummary]] = {}

        for topic, status in TOPICS.items():
            folders = self._pending[topic] + self.subscriptions[topic].drain()
            self._pending[topic] = []

            for folder in folders:
                if (folder, status) not in resolved:
                    resolved[(folder, status)] = self.resolve(folder, status)
                summary = resolved[(folder, status)]
                if summary is None:
                    continue

                known = summaries.get(summary.id)
                # done is final, a late processing message must not undo it
                if known is not None and known.status is PollenStatus.DONE:
                    continue
                summaries[summary.id] = summary

        return list(summaries.values())

    def fetch_artifact(self, ref: str) -> bytes:
        return self._post("cat", ref).content

    def open_stream(self, topic: str) -> requests.Response:
        """Start a pubsub subscription to topic and return the open streaming response."""

        url = f"{self.api_url}/pubsub/sub"

        try:
            # no read timeout, a quiet topic is not a broken one
            response = self.session.post(
                url, params={"arg": topic}, stream=True, timeout=(self.timeout, None)
            )
        except requests.exceptions.RequestException as error:
            raise FeedNetworkError(f"Could not subscribe to '{topic}' at {url}: {error}")

        try:
            self._raise_for_status(response, url)
        except FeedError:
            response.close()
            raise

        return response

    def resolve(self, folder: str, status: PollenStatus) -> Optional[RemotePollenSummary]:
        """
        Turn an announced pollen folder into a RemotePollenSummary. Folders that cannot be
        resolved are skipped (None), they are usually still propagating through the network.
        """

        try:
            pollen_id = self._json(self._post("block/stat", f"{folder}/input"))["Key"]
            listing = self._json(self._post("ls", f"/ipfs/{folder}/output"))
            links = listing["Objects"][0].get("Links") or []
        except (FeedError, KeyError, IndexError, TypeError, AttributeError) as error:
            logger.debug("skipping pollen folder %s: %s", folder, error)
            return None

        artifact = latest_image(links)
        prompt, model = self._metadata(pollen_id)

        return RemotePollenSummary(
            id=pollen_id,
            status=status,
            artifact_ref=artifact[0] if artifact else None,
            artifact_name=artifact[1] if artifact else None,
            source_ref=folder,
            prompt=prompt,
            model=model,
        )

    def _check_subscriptions(self) -> None:
        """
        Replace subscriptions whose stream broke. Whatever they buffered is kept for the next
        call; the loss itself is reported as a FeedNetworkError.
        """

        lost = []

        for topic, subscription in list(self.subscriptions.items()):
            if subscription.alive:
                continue
            self._pending[topic].extend(subscription.drain())
            lost.append(str(subscription.error))
            self.subscriptions[topic] = Subscription(self, topic).start()

        if lost:
            raise FeedNetworkError(f"Resubscribed after {'; '.join(lost)}")

    def _metadata(self, pollen_id: str) -> tuple[Optional[str], Optional[Model]]:
        """
        Prompt and model of a pollen. Answers are remembered per pollen, unless the node could
        not be asked, so that a transient failure is retried on the next resolve.
        """

        if pollen_id in self._metadata_cache:
            return self._metadata_cache[pollen_id]

        try:
            prompt = self._cat_text(f"{pollen_id}/text_input")
            model = self._cat_text(f"{pollen_id}/model")
        except FeedError as error:
            logger.debug("no metadata for %s yet: %s", pollen_id, error)
            return None, None

        metadata = (prompt, Model.from_name(model) if model else None)

        self._metadata_cache[pollen_id] = metadata
        while len(self._metadata_cache) > METADATA_CACHE_SIZE:
            self._metadata_cache.popitem(last=False)

        return metadata

    def _cat_text(self, path: str) -> Optional[str]:
        try:
            text = self._post("cat", path).content.decode("utf-8", errors="replace")
        except FeedNotFoundError as error:
            logger.debug("no %s: %s", path, error)
            return None

        return text.strip() or None

    def _post(self, endpoint: str, arg: str) -> requests.Response:
        # the IPFS HTTP API only accepts POST
        url = f"{self.api_url}/{endpoint}"

        try:
            response = self.session.post(url, params={"arg": arg}, timeout=self.timeout)
        except requests.exceptions.RequestException as error:
            raise FeedNetworkError(f"Could not reach {url}: {error}")

        self._raise_for_status(response, url)
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response, url: str) -> None:
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError:
            message = _error_message(response)
            if "not found" in message.lower() or "no link named" in message.lower():
                raise FeedNotFoundError(f"{url}: {message}")
            raise FeedNetworkError(
                f"Something went wrong trying to access {url} (status code {response.status_code}): {message}"
            )

    @staticmethod
    def _json(response: requests.Response):
        try:
            return response.json()
        except ValueError as error:
            raise FeedParseError(f"Invalid JSON from {response.url}: {error}")


def _error_message(response: requests.Response) -> str:
    """The node reports errors as {"Message": ..., "Code": ..., "Type": "error"}."""

    try:
        return str(response.json().get("Message", ""))
    except (ValueError, AttributeError):
        return response.text.strip()
