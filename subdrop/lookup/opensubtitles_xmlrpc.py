"""OpenSubtitles XML-RPC movie guessing.

Calls ``GuessMovieFromString`` and maps the ``BestGuess`` struct of the
queried string to a MovieGuessResult.
"""

import asyncio
import time
import xmlrpc.client
from xml.parsers.expat import ExpatError

import requests
from loguru import logger

from subdrop.core.errors import InvalidResultError, NetworkError, ProtocolError, error_context
from subdrop.lookup.base import MovieGuesser
from subdrop.lookup.models import MovieGuessResult

STATUS_OK = "200 OK"


class OpenSubtitlesXmlRpcClient(MovieGuesser):
    """Movie guesser backed by the OpenSubtitles XML-RPC API.

    Requests go through a shared ``requests.Session`` with a small minimum
    delay between calls; the blocking call runs in a worker thread.
    """

    name = "opensubtitles-xmlrpc"

    def __init__(
        self,
        url: str,
        token: str = "",
        user_agent: str = "subdrop v0.1.0",
        request_delay: float = 0.1,
        timeout: float = 30.0,
    ):
        self.url = url
        self.token = token
        self.request_delay = request_delay
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Content-Type": "text/xml"})
        self._last_request_time = 0.0

    def _rate_limit(self):
        """Enforce the minimum delay between requests."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self.request_delay:
            time.sleep(self.request_delay - elapsed)
        self._last_request_time = time.time()

    async def guess_movie(self, query: str) -> MovieGuessResult | None:
        return await asyncio.to_thread(self.guess_movie_sync, query)

    def guess_movie_sync(self, query: str) -> MovieGuessResult | None:
        """Blocking GuessMovieFromString call for a single query.

        Raises:
            NetworkError: Transport failure or non-2xx HTTP status
            ProtocolError: Fault, unparsable body or non-OK status
        """
        body = xmlrpc.client.dumps((self.token, [query]), methodname="GuessMovieFromString")

        self._rate_limit()
        logger.debug(f"GuessMovieFromString: {query}")
        try:
            response = self.session.post(self.url, data=body.encode("utf-8"), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"XML-RPC request failed: {e}") from e

        with error_context(
            error_types=(
                xmlrpc.client.Fault,
                xmlrpc.client.ResponseError,
                ExpatError,
                ValueError,
                TypeError,
            ),
            default_message="Malformed GuessMovieFromString response",
            log_level="warning",
            wrap_as=ProtocolError,
        ):
            (payload,), _ = xmlrpc.client.loads(response.content)

        return parse_guess_response(payload, query)


def parse_guess_response(payload: dict, query: str) -> MovieGuessResult | None:
    """Extract the best guess for ``query`` from a decoded response struct.

    Raises:
        ProtocolError: The response status is not "200 OK"
    """
    if not isinstance(payload, dict):
        raise ProtocolError(f"Unexpected GuessMovieFromString payload: {type(payload).__name__}")

    status = payload.get("status")
    if status != STATUS_OK:
        raise ProtocolError(f"GuessMovieFromString returned status {status!r}")

    data = payload.get("data") or {}
    entry = data.get(query) if isinstance(data, dict) else None
    best = entry.get("BestGuess") if isinstance(entry, dict) else None
    if not isinstance(best, dict) or not best:
        logger.debug(f"No BestGuess for {query}")
        return None

    if not best.get("MovieName"):
        raise InvalidResultError(f"BestGuess for {query} has no MovieName")

    with error_context(
        error_types=(ValueError, TypeError),
        default_message=f"Unexpected BestGuess shape for {query}",
        log_level="warning",
        wrap_as=ProtocolError,
    ):
        return MovieGuessResult(
            imdb_id=str(best["IDMovieIMDB"]) if best.get("IDMovieIMDB") else None,
            title=best.get("MovieName"),
            year=_parse_year(best.get("MovieYear")),
            kind=best.get("MovieKind") or "movie",
            reason=best.get("Reason"),
        )


def _parse_year(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
