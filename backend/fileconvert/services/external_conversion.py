# FILE: backend/fileconvert/services/external_conversion.py
# EXTERNAL CONVERSION BACKENDS
# 1. CloudConversionClient: start -> upload -> process -> download over HTTP (httpx).
# 2. LibreOfficeClient: the four phases collapse into one 'soffice --headless' call.
# 3. Both run every attempt through retry_with_backoff (bounded loop, doubling delay).
# 4. 401/403 and 400 short-circuit; 429, 5xx and timeouts are retried.

import os
import subprocess
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, TypeVar

import httpx
import structlog

from ..core.exceptions import (
    AuthenticationError,
    ConversionError,
    ExternalConversionError,
    RateLimitError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    retries: int = 2,
    delay: float = 1.0,
    factor: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Calls 'fn' at most 'retries + 1' times.

    After a retryable failure it sleeps 'delay', multiplies 'delay' by 'factor'
    and tries again. Errors flagged 'retryable = False' propagate immediately.
    When the attempts run out the last error is raised as an
    ExternalConversionError (wrapping it if it was not one already).
    """
    attempt = 0
    wait = delay
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            if not getattr(e, "retryable", True):
                raise
            if attempt > retries:
                logger.error("retry.exhausted", attempts=attempt, error=str(e))
                if isinstance(e, ExternalConversionError):
                    raise
                raise ExternalConversionError(str(e) or e.__class__.__name__) from e
            logger.warning("retry.scheduled", attempt=attempt, max_attempts=retries + 1, delay=wait, error=str(e))
            sleep(wait)
            wait *= factor


def verify_output(path: Path) -> Path:
    """The backend's word is not enough: the file must exist and be non-empty."""
    if not path.exists():
        raise ExternalConversionError(f"Conversion reported success but no output was found at '{path.name}'.")
    if path.stat().st_size == 0:
        path.unlink()
        raise ExternalConversionError("Conversion produced a zero-byte (empty) file. The source file may be unsupported or corrupt.")
    return path


class ExternalConversionClient(Protocol):
    name: str

    def convert(self, input_path: Path, tool: str, output_filename: str) -> Path:
        ...

    def check_health(self) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        ...


class _RetryingClient:
    name = "external"

    def __init__(self, *, retries: int = 2, retry_delay: float = 1.0, backoff: float = 2.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.retries = retries
        self.retry_delay = retry_delay
        self.backoff = backoff
        self._sleep = sleep

    def convert(self, input_path: Path, tool: str, output_filename: str) -> Path:
        input_path = Path(input_path)
        output_path = input_path.parent / output_filename
        log = logger.bind(provider=self.name, tool=tool, input=input_path.name)
        log.info("external.convert.started")

        def attempt() -> Path:
            self._convert_once(input_path, tool, output_path)
            return verify_output(output_path)

        result = retry_with_backoff(
            attempt, retries=self.retries, delay=self.retry_delay, factor=self.backoff, sleep=self._sleep
        )
        log.info("external.convert.completed", output=result.name, size=result.stat().st_size)
        return result

    def _convert_once(self, input_path: Path, tool: str, output_path: Path) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


# --- Cloud API ---

class CloudConversionClient(_RetryingClient):
    name = "cloud"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_client: Optional[httpx.Client] = None,
        request_timeout: float = 60.0,
        process_timeout: float = 300.0,
        **retry_kwargs,
    ):
        super().__init__(**retry_kwargs)
        if not base_url:
            raise ValueError("CLOUD_API_URL must be set when the cloud conversion backend is enabled.")
        if not api_key:
            raise ValueError("CLOUD_API_KEY must be set when the cloud conversion backend is enabled.")
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.process_timeout = process_timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=request_timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    def _convert_once(self, input_path: Path, tool: str, output_path: Path) -> None:
        server, task = self._start(tool)
        server_filename = self._upload(server, task, input_path)
        self._process(server, task, tool, server_filename, input_path.name)
        self._download(server, task, output_path)

    # Phase 1
    def _start(self, tool: str) -> Tuple[str, str]:
        data = self._request("start", "GET", f"{self.base_url}/v1/start/{tool}").json()
        server, task = data.get("server"), data.get("task")
        if not server or not task:
            raise ExternalConversionError("Conversion provider did not return a processing server or task id.")
        return _server_url(server), str(task)

    # Phase 2
    def _upload(self, server: str, task: str, input_path: Path) -> str:
        with input_path.open("rb") as fh:
            response = self._request(
                "upload", "POST", f"{server}/v1/upload",
                data={"task": task},
                files={"file": (input_path.name, fh, "application/octet-stream")},
            )
        server_filename = response.json().get("server_filename")
        if not server_filename:
            raise ExternalConversionError("Conversion provider did not acknowledge the uploaded file.")
        return server_filename

    # Phase 3
    def _process(self, server: str, task: str, tool: str, server_filename: str, filename: str) -> None:
        payload = {
            "task": task,
            "tool": tool,
            "files": [{"server_filename": server_filename, "filename": filename}],
        }
        response = self._request("process", "POST", f"{server}/v1/process", json=payload, timeout=self.process_timeout)
        body = _json_or_empty(response)
        if body.get("error"):
            raise ExternalConversionError(f"Conversion provider failed to process the file: {_error_text(body)}")

    # Phase 4
    def _download(self, server: str, task: str, output_path: Path) -> None:
        try:
            with self._client.stream("GET", f"{server}/v1/download/{task}", headers=self._headers) as response:
                if not response.is_success:
                    response.read()
                    _raise_for_status(response, "download")
                with output_path.open("wb") as out:
                    for chunk in response.iter_bytes():
                        out.write(chunk)
        except ConversionError:
            raise
        except httpx.TimeoutException as e:
            _remove_partial(output_path)
            raise ExternalConversionError(f"Conversion provider timed out during download: {e}") from e
        except httpx.HTTPError as e:
            _remove_partial(output_path)
            raise ExternalConversionError(f"Download from conversion provider failed: {e}") from e

    def _request(self, phase: str, method: str, url: str, *, timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(
                method, url, headers=self._headers, timeout=timeout or self.request_timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise ExternalConversionError(f"Conversion provider timed out during {phase}: {e}") from e
        except httpx.HTTPError as e:
            raise ExternalConversionError(f"Could not reach conversion provider during {phase}: {e}") from e
        _raise_for_status(response, phase)
        return response

    def check_health(self) -> Dict[str, Any]:
        try:
            self._request("health", "GET", f"{self.base_url}/v1/account")
            return {"status": "active", "provider": self.name, "message": "Conversion API is reachable and key is valid."}
        except ConversionError as e:
            logger.warning("external.health.failed", provider=self.name, error=str(e))
            return {
                "status": "error",
                "provider": self.name,
                "message": "Could not connect to the conversion API.",
                "details": str(e),
            }

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _server_url(server: str) -> str:
    server = server.rstrip("/")
    if server.startswith(("http://", "https://")):
        return server
    return f"https://{server}"


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
        return data if isinstance(data, dict) else {}
    except ValueError:
        return {}


def _error_text(body: Dict[str, Any]) -> str:
    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error or body.get("message") or "")


def _raise_for_status(response: httpx.Response, phase: str) -> None:
    if response.is_success:
        return
    code = response.status_code
    body = _json_or_empty(response)
    message = _error_text(body) or response.text[:200] or response.reason_phrase
    if code in (401, 403):
        raise AuthenticationError(f"invalid API key (HTTP {code} during {phase})")
    if code == 429:
        raise RateLimitError(f"rate limited by conversion provider during {phase}: {message}")
    if code >= 500:
        raise ExternalConversionError(f"Conversion provider error during {phase} (HTTP {code}): {message}")
    raise ExternalConversionError(
        f"Conversion provider rejected the {phase} request (HTTP {code}): {message}", retryable=False
    )


def _remove_partial(path: Path) -> None:
    if path.exists():
        path.unlink()


# --- Headless office suite ---

WRITER_INPUTS = {".doc", ".docx", ".odt"}

# Only Writer documents can take the Writer export filter; Draw (images) rejects it.
OUTPUT_FILTERS = {
    "pdf": "pdf:writer_pdf_Export",
    "docx": "docx:MS Word 2007 XML",
}


class LibreOfficeClient(_RetryingClient):
    name = "libreoffice"

    def __init__(
        self,
        binary: str = "soffice",
        *,
        timeout: int = 120,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        **retry_kwargs,
    ):
        super().__init__(**retry_kwargs)
        self.binary = binary
        self.timeout = timeout
        self._run = runner

    def build_command(self, input_path: Path, target_ext: str, out_dir: Path) -> list:
        # Each call gets its own profile dir; soffice refuses to share one between processes.
        profile = (out_dir / ".lo_profile").resolve().as_uri()
        command = [self.binary, f"-env:UserInstallation={profile}", "--headless"]
        if input_path.suffix.lower() == ".pdf" and target_ext != "pdf":
            command.append("--infilter=writer_pdf_import")
        command += ["--convert-to", self.output_filter(input_path, target_ext), "--outdir", str(out_dir), str(input_path)]
        return command

    @staticmethod
    def output_filter(input_path: Path, target_ext: str) -> str:
        if target_ext == "pdf" and input_path.suffix.lower() not in WRITER_INPUTS:
            return target_ext
        return OUTPUT_FILTERS.get(target_ext, target_ext)

    def _convert_once(self, input_path: Path, tool: str, output_path: Path) -> None:
        target_ext = tool.lower().lstrip(".")
        out_dir = input_path.parent
        command = self.build_command(input_path, target_ext, out_dir)

        try:
            process = self._run(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=self.timeout)
        except FileNotFoundError:
            logger.critical("libreoffice.binary_missing", binary=self.binary)
            raise ExternalConversionError(
                f"Conversion tool '{self.binary}' is not installed or not in the system's PATH.", retryable=False
            )
        except subprocess.TimeoutExpired:
            raise ExternalConversionError(f"Document conversion timed out after {self.timeout} seconds.")

        if process.returncode != 0:
            stderr_output = (process.stderr or b"").decode("utf-8", errors="ignore").strip()
            raise ExternalConversionError(
                f"LibreOffice conversion failed with exit code {process.returncode}. Stderr: {stderr_output}"
            )

        produced = out_dir / f"{input_path.stem}.{target_ext}"
        if not produced.exists():
            raise ExternalConversionError(
                f"Conversion command succeeded but output was not found at expected path: '{produced.name}'."
            )
        if produced != output_path:
            os.replace(produced, output_path)

    def check_health(self) -> Dict[str, Any]:
        try:
            process = self._run([self.binary, "--version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=15)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            return {
                "status": "error",
                "provider": self.name,
                "message": f"'{self.binary}' is not available.",
                "details": str(e),
            }
        if process.returncode != 0:
            return {
                "status": "error",
                "provider": self.name,
                "message": f"'{self.binary}' exited with code {process.returncode}.",
                "details": (process.stderr or b"").decode("utf-8", errors="ignore"),
            }
        version = (process.stdout or b"").decode("utf-8", errors="ignore").strip()
        return {"status": "active", "provider": self.name, "message": version or "LibreOffice is available."}
