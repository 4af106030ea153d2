from fastapi import FastAPI, Request
from starlette.responses import Response


API_RESPONSE_HEADERS = {
    # Balances and gate passes must never be cached by proxies or indexed.
    "Cache-Control": "no-store",
    "X-Content-Type-Options": "nosniff",
    "X-Robots-Tag": "noindex, nofollow, noarchive",
}


def install_api_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_api_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in API_RESPONSE_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
