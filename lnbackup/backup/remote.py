"""
Self-host remote transfer protocol.

A self-host server stores bundle folders and speaks a small JSON protocol:

    GET  <host>            -> {"name": "LNReader"}         identity handshake
    POST <host>/list       {"folderTree": [...]}           -> ["name", ...]
    POST <host>/upload     {"folderTree", "name", "content"}
    POST <host>/download   {"folderTree", "name"}          -> {"content": "..."}

The handshake runs once per client before any other request; a host that
does not identify itself as LNReader is rejected without further calls.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from .errors import BundleIOError, NetworkError, ProtocolError, ValidationError
from .layout import BUNDLE_EXTENSION, FILE_ENTRIES, NOVELS_ENTRY, RECORD_SUFFIX

logger = logging.getLogger(__name__)


SELF_HOST_APP_NAME = 'LNReader'
DEFAULT_HANDSHAKE_TIMEOUT = 2.0
DEFAULT_TIMEOUT = 10.0


class SelfHostClient:
    """
    Client for a self-hosted backup server.

    Uses one httpx.Client for all requests; close it with close() or use the
    client as a context manager.
    """

    def __init__(self, host: str, timeout: float = DEFAULT_TIMEOUT,
                 handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize self-host client.

        Args:
            host: Server base URL, e.g. http://192.168.1.10:8000
            timeout: Connect/response timeout for transfers (seconds)
            handshake_timeout: Timeout for the identity request (seconds)
            transport: Optional httpx transport (used by tests)

        Raises:
            ValidationError: If host is empty or not an http(s) URL
        """
        if not isinstance(host, str) or not host.strip():
            raise ValidationError("Self-host URL is required")

        self.host = host.strip().rstrip('/')

        try:
            url = httpx.URL(self.host)
        except httpx.InvalidURL as e:
            raise ValidationError(f"Invalid self-host URL {self.host}: {e}")
        if url.scheme not in ('http', 'https') or not url.host:
            raise ValidationError(f"Invalid self-host URL {self.host}: expected http://host[:port]")

        self.handshake_timeout = handshake_timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._verified = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._client.close()

    def check_host(self) -> bool:
        """
        Verify the host is an LNReader self-host server.

        Returns:
            True if the host identified itself correctly

        Raises:
            NetworkError: If the host cannot be reached in time
            ProtocolError: If the host answers with anything but the expected identity
        """
        if self._verified:
            return True

        response = self._send('GET', self.host, timeout=self.handshake_timeout)

        try:
            data = response.json()
        except ValueError:
            raise ProtocolError(f"Unknown host {self.host}: identity response is not JSON")

        if not isinstance(data, dict) or data.get('name') != SELF_HOST_APP_NAME:
            raise ProtocolError(f"Unknown host {self.host}: not an {SELF_HOST_APP_NAME} backup server")

        self._verified = True
        logger.info(f"Self-host server verified: {self.host}")
        return True

    def list(self, folder_tree: Optional[List[str]] = None) -> List[str]:
        """
        List entry names in a folder on the server.

        A folder that does not exist on the server lists as empty.

        Args:
            folder_tree: Folder path components; the server root when omitted

        Returns:
            List of entry names

        Raises:
            NetworkError, ProtocolError
        """
        response = self._post('list', {'folderTree': folder_tree or []})

        if response.status_code == 404:
            return []
        self._expect_success(response, 'list')

        try:
            names = response.json()
        except ValueError:
            raise ProtocolError(f"Unparseable list response from {self.host}")

        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            raise ProtocolError(f"Unexpected list response from {self.host}")

        return names

    def list_backups(self) -> List[str]:
        """List bundle folders available on the server."""
        return [name for name in self.list() if name.endswith(BUNDLE_EXTENSION)]

    def upload(self, folder_tree: List[str], name: str, content: str):
        """
        Upload one file.

        Raises:
            NetworkError, ProtocolError
        """
        response = self._post('upload', {
            'folderTree': folder_tree,
            'name': name,
            'content': content
        })
        self._expect_success(response, f"upload of {name}")

    def download(self, folder_tree: List[str], name: str) -> Optional[str]:
        """
        Download one file.

        Returns:
            File content, or None if the server does not have the file

        Raises:
            NetworkError, ProtocolError
        """
        response = self._post('download', {'folderTree': folder_tree, 'name': name})

        if response.status_code == 404:
            return None
        self._expect_success(response, f"download of {name}")

        try:
            data = response.json()
        except ValueError:
            raise ProtocolError(f"Unparseable download response for {name} from {self.host}")

        if not isinstance(data, dict) or not isinstance(data.get('content'), str):
            raise ProtocolError(f"Unexpected download response for {name} from {self.host}")

        return data['content']

    def push_bundle(self, bundle_dir, backup_folder: str,
                    cancellation_check: Optional[Callable[[], None]] = None) -> int:
        """
        Upload every file of a local bundle into a server folder.

        Args:
            bundle_dir: Local bundle directory
            backup_folder: Server folder name (ends with .backup)
            cancellation_check: Optional function called between files; raises to abort

        Returns:
            Number of files uploaded

        Raises:
            BundleIOError: If a local bundle file cannot be read
            NetworkError, ProtocolError
        """
        bundle_dir = Path(bundle_dir)
        self.check_host()

        uploads = [([backup_folder], bundle_dir / entry) for entry in FILE_ENTRIES]

        novels_dir = bundle_dir / NOVELS_ENTRY
        if novels_dir.is_dir():
            uploads.extend(
                ([backup_folder, NOVELS_ENTRY], record_file)
                for record_file in sorted(novels_dir.iterdir())
                if record_file.is_file()
            )

        uploaded = 0
        for folder_tree, path in uploads:
            if not path.is_file():
                logger.warning(f"Bundle entry missing, not uploaded: {path.name}")
                continue

            if cancellation_check:
                cancellation_check()

            self.upload(folder_tree, path.name, self._read_text(path))
            uploaded += 1

        logger.info(f"Uploaded {uploaded} files to {self.host} ({backup_folder})")
        return uploaded

    def pull_bundle(self, backup_folder: str, bundle_dir,
                    cancellation_check: Optional[Callable[[], None]] = None) -> int:
        """
        Rebuild a local bundle directory from a server folder.

        Entries the server does not have are left out of the local bundle. A
        folder with none of the bundle entries is treated as a missing backup.

        Args:
            backup_folder: Server folder name
            bundle_dir: Local bundle directory, replaced if it exists
            cancellation_check: Optional function called between files; raises to abort

        Returns:
            Number of files downloaded

        Raises:
            BundleIOError: If the local bundle cannot be written or the backup is not on the server
            NetworkError, ProtocolError
        """
        bundle_dir = Path(bundle_dir)
        self.check_host()

        novels_dir = bundle_dir / NOVELS_ENTRY
        try:
            if bundle_dir.exists():
                shutil.rmtree(bundle_dir)
            novels_dir.mkdir(parents=True)
        except OSError as e:
            raise BundleIOError(f"Failed to prepare {bundle_dir}: {e}")

        downloads = [([backup_folder], entry, bundle_dir / entry) for entry in FILE_ENTRIES]
        downloads.extend(
            ([backup_folder, NOVELS_ENTRY], name, novels_dir / name)
            for name in self.list([backup_folder, NOVELS_ENTRY])
            if name.endswith(RECORD_SUFFIX) and Path(name).name == name
        )

        downloaded = 0
        for folder_tree, name, path in downloads:
            if cancellation_check:
                cancellation_check()

            content = self.download(folder_tree, name)
            if content is None:
                logger.warning(f"Entry {name} not found in {backup_folder}, skipping")
                continue

            self._write_text(path, content)
            downloaded += 1

        if downloaded == 0:
            raise BundleIOError(f"Backup {backup_folder} not found on {self.host}")

        logger.info(f"Downloaded {downloaded} files from {self.host} ({backup_folder})")
        return downloaded

    def _post(self, endpoint: str, body: Dict[str, Any]) -> httpx.Response:
        self.check_host()
        return self._send('POST', f"{self.host}/{endpoint}", json=body)

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out talking to {self.host}: {e}")
        except httpx.TransportError as e:
            raise NetworkError(f"Cannot reach {self.host}: {e}")
        except httpx.InvalidURL as e:
            raise ValidationError(f"Invalid self-host URL {self.host}: {e}")

    def _expect_success(self, response: httpx.Response, action: str):
        if not response.is_success:
            raise ProtocolError(f"Self-host {action} failed with HTTP {response.status_code}")

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_text(encoding='utf-8')
        except OSError as e:
            raise BundleIOError(f"Failed to read {path}: {e}")

    @staticmethod
    def _write_text(path: Path, content: str):
        try:
            path.write_text(content, encoding='utf-8')
        except OSError as e:
            raise BundleIOError(f"Failed to write {path}: {e}")


def list_backups(host: str, **kwargs) -> List[str]:
    """
    List bundle folders on a self-host server.

    Args:
        host: Server base URL
        **kwargs: Passed to SelfHostClient

    Returns:
        Folder names ending with .backup
    """
    with SelfHostClient(host, **kwargs) as client:
        return client.list_backups()
