"""List the calendars visible to the booking account.

Run this once the account is authorized to find the IDs that belong in
``room-ids.json`` and in the pending/approved calendar settings::

    room-booking-calendars
"""

import logging
import sys

from .config import load_settings
from .credentials import CredentialStore
from .errors import BookingError
from .google_client import CalendarGateway, build_calendar_service

logger = logging.getLogger(__name__)


def main() -> int:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    store = CredentialStore(settings.google_client_secrets_file, settings.google_token_file)
    try:
        gateway = CalendarGateway(build_calendar_service(store.obtain()))
        calendars = gateway.list_calendars()
    except BookingError as exc:
        logger.error("%s", exc.message)
        return 1
    if not calendars:
        print("No calendars found.")
        return 0
    print("Calendars:")
    for cal in calendars:
        print(f"{cal['summary']}: {cal['id']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
