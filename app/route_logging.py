from __future__ import annotations

from contextvars import ContextVar

from fastapi.routing import APIRoute
from starlette.requests import Request


BACKGROUND_LABEL = 'background'

current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default=BACKGROUND_LABEL)


def endpoint_label() -> str:
    """Label of the route serving the current request, or 'background' for jobs."""
    return current_endpoint.get()


class EndpointNameRoute(APIRoute):
    """Tags every request with "METHOD /path" so slow-query logs can name the caller."""

    def get_route_handler(self):
        handler = super().get_route_handler()
        label = f"{','.join(sorted(self.methods or ()))} {self.path}"

        async def labelled_handler(request: Request):
            token = current_endpoint.set(label)
            try:
                return await handler(request)
            finally:
                current_endpoint.reset(token)

        return labelled_handler
