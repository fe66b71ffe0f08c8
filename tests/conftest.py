"""Shared fixtures and fakes for redraw tests"""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from redraw.errors import ConfigurationError, GenerationError
from redraw.models import DesignRequest, PageInput
from redraw.store import InMemoryTaskStore


class FakeDesignClient:
    """Generation client double that records calls and fails on demand"""

    def __init__(
        self,
        fail_pages: Iterable[int] = (),
        flaky_pages: Optional[Dict[int, int]] = None,
        delay: float = 0.0,
        configured: bool = True,
        on_call: Optional[Callable[[int], None]] = None,
        errors: Optional[Dict[int, BaseException]] = None,
    ):
        self.fail_pages = set(fail_pages)
        # page -> number of attempts that fail before one succeeds
        self.flaky_pages = dict(flaky_pages or {})
        self.delay = delay
        self.configured = configured
        self.on_call = on_call
        # page -> exception raised instead of a GenerationError
        self.errors = dict(errors or {})
        self.calls: List[int] = []
        self.requests: List[DesignRequest] = []
        self.analyze_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError("Generation API key is not configured")

    async def analyze_content(self, image_data: str) -> str:
        self.analyze_calls += 1
        return "analyzed text"

    async def generate_design(self, request: DesignRequest) -> str:
        number = request.page_number
        self.calls.append(number)
        self.requests.append(request)
        if self.on_call is not None:
            self.on_call(number)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if number in self.errors:
                raise self.errors[number]
            if number in self.fail_pages:
                raise GenerationError(f"page {number} rejected", status_code=500)
            if self.flaky_pages.get(number, 0) > 0:
                self.flaky_pages[number] -= 1
                raise GenerationError(f"page {number} flaked", status_code=503)
            return f"data:image/png;base64,page-{number}"
        finally:
            self.in_flight -= 1

    async def analyze_style(self, files):
        raise GenerationError("style analysis is not faked")


def make_pages(count: int, text: str = "Slide text") -> List[PageInput]:
    return [
        PageInput(page_number=i, image_base64=f"img-{i}", text_content=text)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def store():
    return InMemoryTaskStore()


@pytest.fixture
def fake_client():
    return FakeDesignClient()
