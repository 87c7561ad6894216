"""Signed-request transport to an ACME server."""

import json
import threading
from typing import Any

import httpx
from pydantic import ValidationError

from acmetoolbox._logging import Timer, get_logger
from acmetoolbox.crypto import load_private_key_pem, sign_jws
from acmetoolbox.exceptions import AcmeError, AcmeRuntimeError, LogicError, TransportError
from acmetoolbox.models import Directory
from acmetoolbox.storage.base import CertificateStorage

logger = get_logger(__name__)

_JSON_CONTENT_TYPES = ("application/json", "application/problem+json")


class Connector:
    """Turns protocol operations into signed, nonced HTTP exchanges with the CA.

    The directory is fetched and a first nonce obtained on construction.
    Every response carrying ``Replay-Nonce`` replaces the held nonce; a
    successful POST without one triggers a fresh HEAD on ``newNonce``.
    Signing consumes the held nonce, so one nonce is never used twice.

    Args:
        base_url: CA base URL; relative paths such as ``/directory`` resolve against it.
        storage: Storage holding the account key pair.
        http_client: Optional httpx client (tests inject one backed by respx).
        timeout: HTTP request timeout in seconds (default: 30).
        verify: TLS verification setting for the private client.

    Raises:
        AcmeRuntimeError: If the directory or the first nonce cannot be fetched.
    """

    NONCE_ATTEMPTS = 3

    def __init__(
        self,
        base_url: str,
        storage: CertificateStorage,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
        verify: bool | str = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout, verify=verify)

        self._nonce: str | None = None
        self._nonce_lock = threading.Lock()

        self.account_url: str | None = None
        self.account_deactivated = False

        try:
            self.directory = self.fetch_directory()
            self.refresh_nonce()
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        """Close the HTTP client if this connector created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "Connector":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def nonce(self) -> str | None:
        """The nonce that the next signed request will consume."""
        return self._nonce

    def fetch_directory(self) -> Directory:
        """GET ``/directory`` and parse the endpoint URLs.

        Raises:
            AcmeRuntimeError: If the response is not 200 or not a valid directory.
        """
        response = self.get("/directory")
        if response.status_code != 200:
            raise AcmeRuntimeError(f"Directory fetch returned {response.status_code}")

        try:
            directory = Directory.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AcmeRuntimeError(f"Unusable directory from {self.base_url}: {e}") from e

        logger.debug("Directory loaded", extra={"base_url": self.base_url})
        return directory

    def refresh_nonce(self) -> None:
        """HEAD the newNonce endpoint and hold the returned nonce.

        Raises:
            AcmeRuntimeError: If the server does not answer 200/204 with a nonce.
        """
        response = self.head(self.directory.new_nonce)
        if response.status_code not in (200, 204) or "Replay-Nonce" not in response.headers:
            raise AcmeRuntimeError(
                f"No new nonce - fetched {self.directory.new_nonce} got {response.status_code}"
            )

    def _adopt_nonce(self, response: httpx.Response) -> bool:
        nonce = response.headers.get("Replay-Nonce")
        if not nonce:
            return False
        with self._nonce_lock:
            self._nonce = nonce
        logger.debug("Nonce updated", extra={"nonce": nonce})
        return True

    def _take_nonce(self) -> str:
        # another thread may take the nonce between our refresh and our read
        for _ in range(self.NONCE_ATTEMPTS):
            with self._nonce_lock:
                nonce, self._nonce = self._nonce, None
            if nonce is not None:
                return nonce
            self.refresh_nonce()
        raise AcmeRuntimeError("No nonce available for signing")

    def _resolve(self, url: str) -> str:
        return url if url.startswith("http") else f"{self.base_url}{url}"

    def _request(self, method: str, url: str, content: str | None = None) -> httpx.Response:
        if self.account_deactivated:
            raise LogicError("The account was deactivated. No further requests can be made.")

        request_url = self._resolve(url)
        headers = {"Accept": "application/json"}
        if content:
            headers["Content-Type"] = "application/jose+json"

        with Timer() as timer:
            try:
                response = self._http.request(method, request_url, content=content, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(
                    "ACME request failed",
                    extra={"method": method, "url": request_url, "error": str(e)},
                )
                raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug(
            "ACME request",
            extra={
                "method": method,
                "url": request_url,
                "status_code": response.status_code,
                "elapsed_ms": round(timer.elapsed_ms, 2),
            },
        )

        if response.status_code >= 400:
            self._adopt_nonce(response)
            raise self._error_from(response)

        if not self._adopt_nonce(response) and method == "POST":
            # GET and HEAD are not expected to carry a fresh nonce
            self.refresh_nonce()

        content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
        if content_type in _JSON_CONTENT_TYPES:
            try:
                response.json()
            except ValueError as e:
                raise AcmeRuntimeError(f"Bad JSON received from {request_url}: {response.text}") from e

        return response

    @staticmethod
    def _error_from(response: httpx.Response) -> AcmeError:
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return AcmeError(type="unknown", detail=response.text, status_code=response.status_code)
        return AcmeError.from_response(data, response.status_code, headers=response.headers)

    def get(self, url: str) -> httpx.Response:
        """GET a CA resource.

        Raises:
            LogicError: If the account has been deactivated.
            AcmeError: If the CA answers 4xx/5xx.
            TransportError: If no response was received.
        """
        return self._request("GET", url)

    def post(self, url: str, signed_body: str) -> httpx.Response:
        """POST a signed JWS body (from sign_jwk or sign_kid) to a CA resource."""
        return self._request("POST", url, content=signed_body)

    def head(self, url: str) -> httpx.Response:
        return self._request("HEAD", url)

    def get_as_post(self, url: str) -> httpx.Response:
        """Fetch a resource with a KID-signed POST-as-GET."""
        return self.post(url, self.sign_kid("", self.account_url, url))

    def _signing_key(self, private_key_pem: str | None):
        pem = private_key_pem or self.storage.get_account_private_key()
        if not pem:
            raise AcmeRuntimeError("No private key available for signing")
        try:
            return load_private_key_pem(pem)
        except ValueError as e:
            raise AcmeRuntimeError(f"Failed to load signing key: {e}") from e

    def sign_jwk(
        self,
        payload: dict[str, Any] | str,
        url: str,
        private_key_pem: str | None = None,
        include_nonce: bool = True,
    ) -> str:
        """Build a JWS that embeds the signer's public key.

        Used before an account URL exists (account creation and lookup),
        for the inner JWS of a key change, and for certificate revocation.

        Args:
            payload: Dict payload, or "" for POST-as-GET.
            url: Target URL, placed in the protected header.
            private_key_pem: Signing key (default: the stored account key).
            include_nonce: False only for the nonce-less inner key-change JWS.

        Returns:
            Flattened JWS serialized as JSON.
        """
        key = self._signing_key(private_key_pem)
        nonce = self._take_nonce() if include_nonce else None
        return json.dumps(sign_jws(key, payload, url, nonce=nonce))

    def sign_kid(
        self,
        payload: dict[str, Any] | str,
        kid: str | None,
        url: str,
        private_key_pem: str | None = None,
    ) -> str:
        """Build a JWS identified by the account URL (``kid``)."""
        if not kid:
            raise LogicError("No account URL; bootstrap the account first")
        key = self._signing_key(private_key_pem)
        return json.dumps(sign_jws(key, payload, url, nonce=self._take_nonce(), kid=kid))

    def check_http_challenge(self, domain: str, token: str, expected: str) -> bool:
        """Fetch the well-known challenge file from the domain itself and compare it.

        Redirects are followed, as the CA does. Transport failures count as
        "not served yet" and return False.
        """
        url = f"http://{domain}/.well-known/acme-challenge/{token}"
        try:
            response = self._http.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("HTTP challenge check failed", extra={"url": url, "error": str(e)})
            return False

        if response.status_code != 200:
            logger.warning(
                "HTTP challenge check failed",
                extra={"url": url, "status_code": response.status_code},
            )
            return False

        return response.content == expected.encode()
