from __future__ import annotations

# Local dashboard dev servers (Vite, CRA).
DEV_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:8080",
    "http://localhost:3000",
)


def build_allowed_origins(*, frontend_base_url: str, frontend_urls: str | None, include_dev: bool) -> list[str]:
    allowed: set[str] = set(DEV_ORIGINS) if include_dev else set()

    if frontend_base_url:
        allowed.add(frontend_base_url.rstrip("/"))

    if frontend_urls:
        for origin in [s.strip().rstrip("/") for s in str(frontend_urls).split(",") if s.strip()]:
            allowed.add(origin)

    return sorted(allowed)
