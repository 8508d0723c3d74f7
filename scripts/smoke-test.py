#!/usr/bin/env python3
"""
Smoke test for CDN console staging/production deployments.

Deploy guardrail for the invite upload flow:
- Fast (well under a minute against a healthy deployment)
- Leaves a single revoked invite behind, nothing else
- Actionable failures (step name, HTTP status/body preview)

Flow (default):
1. Health check
2. Create invite (admin API key, POST /invites)
3. Public metadata (GET /invites/public/{token})
4. Sign POST policy (POST /invites/public/{token}/sign-post)
5. Upload to storage + commit (optional via --upload)
6. Revoke invite and confirm the public link stops working

Usage:
    ./scripts/smoke-test.py https://staging.example.com --api-key sk-... --cdn-id <id>
    ./scripts/smoke-test.py https://staging.example.com --health-only
"""

import argparse
import json
import os
import random
import secrets
import sys
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

SkipCheck = Callable[["SmokeContext"], str | None]


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
MAX_ERROR_BODY_CHARS = 10_000
BODY_PREVIEW_BYTES = 200
MAX_BACKOFF_SECONDS = 4.0
SMOKE_MIME_TYPE = "text/plain"
SMOKE_EXTENSION = "txt"
SMOKE_MAX_BYTES = 1024


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _preview_bytes(value: bytes, limit: int = BODY_PREVIEW_BYTES) -> bytes:
    return value[:limit]


def _decode_limited(value: bytes, max_chars: int = MAX_ERROR_BODY_CHARS) -> str:
    decoded = value.decode("utf-8", errors="replace")
    if len(decoded) <= max_chars:
        return decoded
    return decoded[:max_chars] + "…"


def _is_retryable_status(status_code: int) -> bool:
    # 429 is not retried; rate limits are part of what this checks.
    return status_code in {408, 425, 502, 503, 504, 522, 524}


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout_seconds: float | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        effective_timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            request = Request(url, data=body, headers=headers or {}, method=method)
            try:
                with urlopen(request, timeout=effective_timeout) as response:
                    return response.getcode(), dict(response.headers.items()), response.read()
            except HTTPError as e:
                error_body = e.read() if e.fp else b""
                if attempt < max_attempts and _is_retryable_status(e.code):
                    self._sleep_backoff(attempt)
                    continue
                resp_headers = dict(e.headers.items()) if e.headers else {}
                return e.code, resp_headers, error_body
            except (URLError, TimeoutError) as e:
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e
        raise RuntimeError(f"No response from {method} {url}")

    def api_call(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        api_key: str | None = None,
    ) -> tuple[int, dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        body = json.dumps(data).encode() if data is not None else None
        url = f"{self.base_url}/api/v1{path}"
        status, _, raw = self.request(method, url, headers=headers, body=body)
        try:
            payload = json.loads(raw.decode()) if raw else {}
        except json.JSONDecodeError as e:
            raise RuntimeError(
                f"Invalid JSON response from {method} {path}: preview={_preview_bytes(raw)!r}"
            ) from e
        return status, payload

    def api_json(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        api_key: str | None = None,
    ) -> dict[str, Any]:
        status, payload = self.api_call(method, path, data=data, api_key=api_key)
        if status < 200 or status >= 300:
            raise ApiError(status, _decode_limited(json.dumps(payload).encode()))
        return payload

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def wait_for_health(client: HttpClient, max_attempts: int = 30, delay: float = 2.0) -> bool:
    """Wait for /health to return healthy status."""
    url = f"{client.base_url}/health"

    for attempt in range(1, max_attempts + 1):
        try:
            status, _, body = client.request("GET", url, timeout_seconds=10.0)
            if status == 200 and json.loads(body.decode()).get("status") == "healthy":
                log(f"Health check passed (attempt {attempt})")
                return True
        except (json.JSONDecodeError, RuntimeError):
            pass

        if attempt < max_attempts:
            time.sleep(delay)

    return False


def encode_multipart(fields: dict[str, str], filename: str, content: bytes) -> tuple[bytes, str]:
    """Build a multipart/form-data body for a POST policy upload; `file` goes last."""
    boundary = f"----smoke{secrets.token_hex(12)}"
    parts: list[bytes] = []
    for name, value in fields.items():
        parts.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n".encode()
        )
    parts.append(
        (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'
            f"Content-Type: {fields.get('Content-Type', SMOKE_MIME_TYPE)}\r\n\r\n"
        ).encode()
        + content
        + b"\r\n"
    )
    parts.append(f"--{boundary}--\r\n".encode())
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int
    api_key: str | None = None
    cdn_id: str | None = None

    invite_id: str | None = None
    token: str | None = None
    policy: dict[str, Any] | None = None
    payload: bytes = b""

    def require_api_key(self) -> str:
        if not self.api_key:
            raise RuntimeError("Missing admin API key (pass --api-key or set CDN_CONSOLE_API_KEY)")
        return self.api_key

    def require_token(self) -> str:
        if not self.token:
            raise RuntimeError("Missing invite token (step ordering bug)")
        return self.token

    def require_invite_id(self) -> str:
        if not self.invite_id:
            raise RuntimeError("Missing invite_id (step ordering bug)")
        return self.invite_id

    def require_policy(self) -> dict[str, Any]:
        if self.policy is None:
            raise RuntimeError("Missing upload policy (step ordering bug)")
        return self.policy


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]
    # Return `None` to run the step; return a string to skip with that reason.
    skip_reason: SkipCheck | None = None


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str  # passed|skipped|failed
    seconds: float
    detail: str | None = None


def _print_summary(results: list[StepResult], total_seconds: float) -> None:
    log("Summary:")
    for result in results:
        suffix = f" - {result.detail}" if result.detail else ""
        log(f"  {result.status.upper():7} {result.name} ({result.seconds:.2f}s){suffix}")
    log(f"Total: {total_seconds:.2f}s")


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    results: list[StepResult] = []
    overall_start = time.time()

    for step in steps:
        reason = step.skip_reason(ctx) if step.skip_reason else None
        if reason:
            log(f"SKIP: {step.name}: {reason}")
            results.append(StepResult(step.name, "skipped", 0.0, reason))
            continue

        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            elapsed = time.time() - start
            results.append(StepResult(step.name, "failed", elapsed, str(e)))
            _print_summary(results, time.time() - overall_start)
            return False

        elapsed = time.time() - start
        results.append(StepResult(step.name, "passed", elapsed))
        log(f"OK: {step.name} ({elapsed:.2f}s)")

    _print_summary(results, time.time() - overall_start)
    return True


def step_health(ctx: SmokeContext) -> None:
    log(f"Checking health: {ctx.client.base_url}/health")
    if not wait_for_health(ctx.client, max_attempts=ctx.max_health_attempts):
        raise RuntimeError("Health check failed")


def step_create_invite(ctx: SmokeContext) -> None:
    if not ctx.cdn_id:
        raise RuntimeError("Missing CDN id (pass --cdn-id)")
    label = f"smoke-{uuid.uuid4().hex[:8]}"
    created = ctx.client.api_json(
        "POST",
        "/invites",
        api_key=ctx.require_api_key(),
        data={
            "label": label,
            "cdn_id": ctx.cdn_id,
            "allowed_mime_types": [SMOKE_MIME_TYPE],
            "allowed_extensions": [SMOKE_EXTENSION],
            "max_size_bytes": SMOKE_MAX_BYTES,
            "max_uses": 1,
            "upload_prefix": "smoke/{label}/",
            "notes": "Created by smoke-test.py",
        },
    )
    ctx.invite_id = created.get("id")
    ctx.token = created.get("token")
    if not ctx.invite_id or not ctx.token:
        raise RuntimeError(f"Invite response missing id/token: keys={sorted(created)}")
    if created.get("status") != "ACTIVE":
        raise RuntimeError(f"Expected new invite to be active, got {created.get('status')!r}")
    if created.get("remaining_uses") != 1:
        raise RuntimeError(f"Expected remaining_uses=1, got {created.get('remaining_uses')!r}")
    log(f"Created invite {ctx.invite_id} ({label}) prefix={created.get('upload_prefix')!r}")


def step_public_metadata(ctx: SmokeContext) -> None:
    meta = ctx.client.api_json("GET", f"/invites/public/{ctx.require_token()}")
    if meta.get("status") != "ACTIVE":
        raise RuntimeError(f"Expected public status 'ACTIVE', got {meta.get('status')!r}")
    if meta.get("allowed_mime_types") != [SMOKE_MIME_TYPE]:
        raise RuntimeError(f"Unexpected allowed_mime_types: {meta.get('allowed_mime_types')!r}")
    # The public view must not leak admin-only fields.
    leaked = {"id", "notes", "notify_emails", "created_by", "upload_prefix"} & set(meta)
    if leaked:
        raise RuntimeError(f"Public metadata exposes admin fields: {sorted(leaked)}")
    log(f"Public metadata OK: cdn={meta.get('cdn_display_name')!r}")


def step_sign_post(ctx: SmokeContext) -> None:
    token = ctx.require_token()

    status, body = ctx.client.api_call(
        "POST",
        f"/invites/public/{token}/sign-post",
        data={"content_type": "image/png", "filename": "smoke.png"},
    )
    if status != 400 or body.get("detail", {}).get("code") != "content_type_not_allowed":
        raise RuntimeError(f"Expected 400 content_type_not_allowed, got {status}: {body!r}")

    policy = ctx.client.api_json(
        "POST",
        f"/invites/public/{token}/sign-post",
        data={"content_type": SMOKE_MIME_TYPE, "filename": "smoke test.txt"},
    )
    key = policy.get("key", "")
    if not key.endswith(f".{SMOKE_EXTENSION}") or "/smoke-test-" not in key:
        raise RuntimeError(f"Unexpected object key from sign-post: {key!r}")
    if not policy.get("url") or not isinstance(policy.get("fields"), dict):
        raise RuntimeError(f"Sign-post response missing url/fields: keys={sorted(policy)}")
    ctx.policy = policy
    log(f"Signed upload policy for key={key}")


def step_upload_and_commit(ctx: SmokeContext) -> None:
    token = ctx.require_token()
    policy = ctx.require_policy()
    ctx.payload = f"smoke-test {datetime.now().isoformat()}\n".encode()

    body, content_type = encode_multipart(policy["fields"], "smoke-test.txt", ctx.payload)
    status, _, raw = ctx.client.request(
        "POST",
        policy["url"],
        headers={"Content-Type": content_type},
        body=body,
        timeout_seconds=60.0,
    )
    if status not in (200, 201, 204):
        raise RuntimeError(f"Storage upload failed: {status} preview={_preview_bytes(raw)!r}")

    committed = ctx.client.api_json(
        "POST",
        f"/invites/public/{token}/commit",
        data={
            "key": policy["key"],
            "size": len(ctx.payload),
            "content_type": SMOKE_MIME_TYPE,
            "extension": SMOKE_EXTENSION,
        },
    )
    if committed.get("remaining_uses") != 0:
        raise RuntimeError(f"Expected remaining_uses=0, got {committed.get('remaining_uses')!r}")
    if not (committed.get("public_url") or committed.get("signed_url")):
        raise RuntimeError("Commit response carries neither public_url nor signed_url")

    status, body = ctx.client.api_call(
        "POST",
        f"/invites/public/{token}/sign-post",
        data={"content_type": SMOKE_MIME_TYPE, "filename": "again.txt"},
    )
    if status != 400 or body.get("detail", {}).get("code") != "invite_exhausted":
        raise RuntimeError(f"Expected 400 invite_exhausted after last use, got {status}: {body!r}")
    log(f"Committed upload {committed.get('upload_id')}")


def step_revoke(ctx: SmokeContext) -> None:
    result = ctx.client.api_json(
        "POST",
        f"/invites/{ctx.require_invite_id()}/revoke",
        api_key=ctx.require_api_key(),
    )
    if result.get("status") != "REVOKED":
        raise RuntimeError(f"Expected revoked status, got {result.get('status')!r}")

    status, body = ctx.client.api_call(
        "POST",
        f"/invites/public/{ctx.require_token()}/sign-post",
        data={"content_type": SMOKE_MIME_TYPE, "filename": "late.txt"},
    )
    if status != 400 or body.get("detail", {}).get("code") != "invite_not_active":
        raise RuntimeError(f"Expected 400 invite_not_active after revoke, got {status}: {body!r}")


def skip_upload_disabled(_: SmokeContext) -> str | None:
    return "enable with --upload (writes one object to the bucket)"


def main() -> int:
    parser = argparse.ArgumentParser(description="CDN console invite smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://staging.example.com)")
    parser.add_argument(
        "--api-key",
        default=os.environ.get("CDN_CONSOLE_API_KEY"),
        help="Admin API key (default: $CDN_CONSOLE_API_KEY)",
    )
    parser.add_argument("--cdn-id", help="CDN the smoke invite uploads into")
    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Only run health check, skip full flow",
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        help="Upload a small object through the signed policy and commit it",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"HTTP timeout seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retries for transient failures (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--max-health-attempts",
        type=int,
        default=30,
        help="Max health check attempts (default: 30)",
    )
    args = parser.parse_args()

    try:
        client = HttpClient(
            base_url=args.base_url.rstrip("/"),
            timeout_seconds=args.timeout,
            retries=args.retries,
        )
        ctx = SmokeContext(
            client=client,
            max_health_attempts=args.max_health_attempts,
            api_key=args.api_key,
            cdn_id=args.cdn_id,
        )

        steps: list[Step] = [Step("health", step_health)]
        if args.health_only:
            log("Health-only mode: skipping invite flow")
        else:
            steps.extend(
                [
                    Step("create invite", step_create_invite),
                    Step("public metadata", step_public_metadata),
                    Step("sign post", step_sign_post),
                    Step(
                        "upload and commit",
                        step_upload_and_commit,
                        skip_reason=None if args.upload else skip_upload_disabled,
                    ),
                    Step("revoke", step_revoke),
                ]
            )

        ok = run_steps(ctx, steps)
        return 0 if ok else 1
    except Exception as e:
        log(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
