# nodelab/core/guacamole_client.py
import base64
import time
from urllib.parse import quote, urlencode

import requests
from loguru import logger

from . import config


class GuacamoleClient:
    """Registers node VNC endpoints as Guacamole connections.

    Every call is best-effort: failures are logged and reported as None or
    False, never raised, so a node can run without a console.
    """

    def __init__(
        self,
        base_url: str = config.GUACAMOLE_URL,
        public_url: str = config.GUAC_PUBLIC_URL,
        username: str = config.GUAC_USERNAME,
        password: str = config.GUAC_PASSWORD,
        data_source: str = config.GUAC_DATA_SOURCE,
        vnc_host: str = config.GUAC_VNC_HOST,
        timeout: float = config.GUAC_HTTP_TIMEOUT,
        auth_attempts: int = config.GUAC_AUTH_ATTEMPTS,
        auth_retry_delay: float = config.GUAC_AUTH_RETRY_DELAY,
        embed_credentials: bool = config.GUAC_EMBED_CREDENTIALS,
    ):
        self.base_url = base_url.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self.username = username
        self.password = password
        self.data_source = data_source
        self.vnc_host = vnc_host
        self.timeout = timeout
        self.auth_attempts = max(1, auth_attempts)
        self.auth_retry_delay = auth_retry_delay
        self.embed_credentials = embed_credentials

    @property
    def connections_url(self) -> str:
        return f"{self.base_url}/api/session/data/{self.data_source}/connections"

    def authenticate(self) -> str | None:
        """Authenticates with Guacamole and returns an auth token."""
        for attempt in range(1, self.auth_attempts + 1):
            try:
                response = requests.post(
                    f"{self.base_url}/api/tokens",
                    data={"username": self.username, "password": self.password},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()["authToken"]
            except (requests.exceptions.RequestException, ValueError, KeyError) as e:
                logger.warning(f"Error getting Guacamole token (attempt {attempt}/{self.auth_attempts}): {e}")
                if attempt < self.auth_attempts:
                    time.sleep(self.auth_retry_delay)
        logger.error("Could not authenticate with Guacamole (is it running?)")
        return None

    def register(self, node_id: str, node_name: str, vnc_port: int) -> str | None:
        """Creates a VNC connection and returns its identifier."""
        token = self.authenticate()
        if not token:
            return None

        connection_data = {
            "parentIdentifier": "ROOT",
            "name": f"{node_name} ({node_id})",
            "protocol": "vnc",
            "parameters": {
                "hostname": self.vnc_host,
                "port": str(vnc_port),
                "password": "",
            },
            "attributes": {
                "max-connections": "",
                "max-connections-per-user": "",
            },
        }
        try:
            response = requests.post(
                self.connections_url,
                params={"token": token},
                json=connection_data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            connection_id = str(response.json()["identifier"])
        except (requests.exceptions.RequestException, ValueError, KeyError) as e:
            logger.error(f"Failed to register {node_id} in Guacamole: {e}")
            return None
        logger.info(f"Registered {node_name} ({node_id}) in Guacamole as connection {connection_id}")
        return connection_id

    def deregister(self, connection_id: str | None) -> bool:
        """Deletes a connection. Silently skips when there is nothing to delete."""
        if not connection_id:
            return True
        token = self.authenticate()
        if not token:
            logger.warning(f"Could not get Guacamole token to delete connection {connection_id}")
            return False
        try:
            response = requests.delete(
                f"{self.connections_url}/{quote(connection_id, safe='')}",
                params={"token": token},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not delete Guacamole connection {connection_id}: {e}")
            return False
        logger.info(f"Deleted connection {connection_id} from Guacamole")
        return True

    def console_url(self, connection_id: str | None) -> str | None:
        """Browser URL for a connection's client page."""
        if not connection_id:
            return None
        identifier = f"{connection_id}\0c\0{self.data_source}".encode("utf-8")
        encoded = base64.b64encode(identifier).decode("ascii")
        query = ""
        if self.embed_credentials:
            query = "?" + urlencode({"username": self.username, "password": self.password})
        return f"{self.public_url}/{query}#/client/{encoded}"

    def is_reachable(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Guacamole unreachable: {e}")
            return False
        return response.ok
