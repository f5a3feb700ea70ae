"""
Address autocomplete controller

Headless state machine behind the address entry field: it debounces
keystrokes, asks the Places client for suggestions, and resolves the chosen
suggestion to an address and (when possible) coordinates.

    IDLE -> TYPING -> (debounce) QUERYING -> SHOWING_SUGGESTIONS -> IDLE

Every keystroke bumps a sequence number; a response that arrives after a
newer keystroke, selection or clear is discarded, so a slow early query can
never overwrite the results of a later one.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

from ..schemas import LocationData, PlaceAutocomplete
from .places_client import DEFAULT_AUTOCOMPLETE_RADIUS, PlacesClient

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.3
BLUR_HIDE_DELAY_SECONDS = 0.15
MIN_QUERY_LENGTH = 3

MANUAL_ENTRY_MESSAGE = "Unable to load address suggestions. Please enter address manually."

AddressSelectCallback = Callable[[str, Optional[LocationData]], Any]


class AutocompleteState(str, Enum):
    IDLE = "idle"
    TYPING = "typing"
    QUERYING = "querying"
    SHOWING_SUGGESTIONS = "showing_suggestions"


class AddressAutocomplete:
    """Drives PlacesClient.autocomplete from live text input"""

    def __init__(
        self,
        places_client: PlacesClient,
        on_address_select: AddressSelectCallback,
        user_location: Optional[LocationData] = None,
        on_change_text: Optional[Callable[[str], Any]] = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        blur_delay_seconds: float = BLUR_HIDE_DELAY_SECONDS,
        radius_meters: int = DEFAULT_AUTOCOMPLETE_RADIUS,
        min_query_length: int = MIN_QUERY_LENGTH,
    ):
        self.places_client = places_client
        self.on_address_select = on_address_select
        self.on_change_text = on_change_text
        self.user_location = user_location
        self.debounce_seconds = debounce_seconds
        self.blur_delay_seconds = blur_delay_seconds
        self.radius_meters = radius_meters
        self.min_query_length = min_query_length

        self.text = ""
        self.suggestions: list[PlaceAutocomplete] = []
        self.show_suggestions = False
        self.is_loading = False
        self.error = ""
        self.state = AutocompleteState.IDLE

        self._sequence = 0
        self._debounce_task: Optional[asyncio.Task] = None
        self._hide_task: Optional[asyncio.Task] = None
        self._query_tasks: set[asyncio.Task] = set()

    # ========================================================================
    # EVENTS
    # ========================================================================

    def on_text_change(self, text: str) -> None:
        """Keystroke: update text now, (re)start the debounce for long enough queries"""
        self.text = text
        self.error = ""
        if self.on_change_text:
            self.on_change_text(text)

        self._cancel_debounce()
        self._sequence += 1

        if len(text.strip()) < self.min_query_length:
            self.suggestions = []
            self.show_suggestions = False
            self.is_loading = False
            self.state = AutocompleteState.IDLE
            return

        self.state = AutocompleteState.TYPING
        self._debounce_task = asyncio.get_running_loop().create_task(
            self._debounce(text, self._sequence)
        )

    async def select(self, suggestion: PlaceAutocomplete) -> None:
        """Resolve a tapped suggestion and hand it to on_address_select"""
        self._sequence += 1
        self._cancel_debounce()
        self._cancel_hide()

        self.text = suggestion.description
        self.suggestions = []
        self.show_suggestions = False
        self.is_loading = False
        self.state = AutocompleteState.IDLE

        if suggestion.is_fallback:
            logger.info(f"📝 Using fallback address: {suggestion.main_text}")
            await self._emit(suggestion.main_text, None)
            return

        details = None
        try:
            details = await self.places_client.place_details(suggestion.place_id)
        except Exception as e:
            logger.error(f"❌ Error resolving suggestion {suggestion.place_id}: {e}")

        if details is not None:
            logger.info(f"✅ Place details received: {details.formatted_address}")
            await self._emit(details.formatted_address, details.to_location())
            return

        logger.info(f"⚠️ Using description as fallback: {suggestion.description}")
        await self._emit(suggestion.description, None)

    def focus(self) -> None:
        self._cancel_hide()
        if len(self.text.strip()) >= self.min_query_length and self.suggestions:
            self.show_suggestions = True
            self.state = AutocompleteState.SHOWING_SUGGESTIONS

    def blur(self) -> None:
        """Hide suggestions after a short delay so a tap on one still registers"""
        self._cancel_hide()
        self._hide_task = asyncio.get_running_loop().create_task(self._hide_later())

    def clear(self) -> None:
        self._sequence += 1
        self._cancel_debounce()
        self.text = ""
        self.suggestions = []
        self.show_suggestions = False
        self.is_loading = False
        self.error = ""
        self.state = AutocompleteState.IDLE
        if self.on_change_text:
            self.on_change_text("")

    async def use_current_location(self) -> bool:
        """Select the user's own location, if it has a known address"""
        if self.user_location is None or not self.user_location.address:
            return False
        self._sequence += 1
        self._cancel_debounce()
        self.text = self.user_location.address
        self.show_suggestions = False
        self.state = AutocompleteState.IDLE
        await self._emit(self.user_location.address, self.user_location)
        return True

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _debounce(self, query: str, sequence: int) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._debounce_task = None
        task = asyncio.get_running_loop().create_task(self._fetch_suggestions(query, sequence))
        self._query_tasks.add(task)
        task.add_done_callback(self._query_tasks.discard)

    async def _fetch_suggestions(self, query: str, sequence: int) -> None:
        # A keystroke landed between the debounce firing and this task starting
        if sequence != self._sequence:
            return

        self.state = AutocompleteState.QUERYING
        self.is_loading = True
        try:
            try:
                results = await self._autocomplete(query)
            except Exception as e:
                logger.error(f"❌ Address autocomplete error: {e}")
                # One more attempt; the client degrades to fallback suggestions
                try:
                    results = await self._autocomplete(query)
                except Exception as retry_error:
                    logger.error(f"❌ Address autocomplete retry failed: {retry_error}")
                    if sequence == self._sequence:
                        self.suggestions = []
                        self.show_suggestions = False
                        self.error = MANUAL_ENTRY_MESSAGE
                        self.state = AutocompleteState.IDLE
                    return

            if sequence != self._sequence:
                logger.debug(f"Discarding stale suggestions for '{query}'")
                return

            logger.info(f"✅ Found {len(results)} address suggestions")
            self.suggestions = results
            self.show_suggestions = True
            self.state = AutocompleteState.SHOWING_SUGGESTIONS
        finally:
            if sequence == self._sequence:
                self.is_loading = False

    async def _autocomplete(self, query: str) -> list[PlaceAutocomplete]:
        return await self.places_client.autocomplete(query, self.user_location, self.radius_meters)

    async def _hide_later(self) -> None:
        await asyncio.sleep(self.blur_delay_seconds)
        self._hide_task = None
        self.show_suggestions = False
        if self.state == AutocompleteState.SHOWING_SUGGESTIONS:
            self.state = AutocompleteState.IDLE

    async def _emit(self, address: str, location: Optional[LocationData]) -> None:
        result = self.on_address_select(address, location)
        if inspect.isawaitable(result):
            await result

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    def _cancel_hide(self) -> None:
        if self._hide_task is not None:
            self._hide_task.cancel()
            self._hide_task = None

    async def wait_idle(self) -> None:
        """Wait for pending debounce, query and hide tasks to finish"""
        while True:
            pending = [
                t
                for t in (self._debounce_task, self._hide_task, *self._query_tasks)
                if t is not None and not t.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        self._cancel_debounce()
        self._cancel_hide()
        for task in list(self._query_tasks):
            task.cancel()
        await asyncio.gather(*self._query_tasks, return_exceptions=True)
