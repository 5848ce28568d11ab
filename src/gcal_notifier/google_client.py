"""
Google Calendar connectivity: OAuth token handling and the event source.
"""

import json
import logging
from datetime import datetime
from datetime import timezone

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gcal_notifier.db import TOKENS_KEY
from gcal_notifier.models import AuthorizationError
from gcal_notifier.models import CalendarEvent
from gcal_notifier.models import FetchError
from gcal_notifier.models import PersistenceError
from gcal_notifier.store import parse_events

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

AUTH_PROMPT = "Open this URL in your browser to authorize the app: {url}"
AUTH_SUCCESS = "OK. You are now logged in."

logger = logging.getLogger(__name__)


class GoogleAuthorizer:
    """Owns the OAuth credentials and the redirect-callback flow."""

    def __init__(
        self,
        blob_store,
        client_id: str,
        client_secret: str,
        redirect_port: int = 9080,
        force_login: bool = False,
    ):
        self.blob_store = blob_store
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_port = redirect_port
        self._callbacks = []
        self._saved_token: str | None = None
        self.credentials: Credentials | None = None if force_login else self._load()

    def _load(self) -> Credentials | None:
        try:
            data = self.blob_store.load_blob(TOKENS_KEY)
        except PersistenceError as e:
            logger.warning("Could not read stored tokens: %s", e)
            return None
        if not data:
            return None
        try:
            info = json.loads(data.decode("utf-8"))
            creds = Credentials.from_authorized_user_info(info, SCOPES)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("Stored tokens are corrupt, ignoring them: %s", e)
            return None
        self._saved_token = creds.token
        return creds

    def _client_config(self) -> dict:
        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
                "redirect_uris": [f"http://localhost:{self.redirect_port}/"],
            }
        }

    def is_authorized(self) -> bool:
        creds = self.credentials
        if creds is None:
            return False
        return creds.valid or bool(creds.refresh_token)

    def on_authorized(self, callback):
        """Register callback(credentials) to run after authorize() succeeds."""
        self._callbacks.append(callback)

    def authorize(self, open_browser: bool = True) -> Credentials:
        """
        Run the local redirect flow and store the resulting tokens.

        Blocks until the browser redirect arrives on localhost:<redirect_port>.
        """
        flow = InstalledAppFlow.from_client_config(self._client_config(), SCOPES)
        try:
            creds = flow.run_local_server(
                host="localhost",
                port=self.redirect_port,
                open_browser=open_browser,
                authorization_prompt_message=AUTH_PROMPT,
                success_message=AUTH_SUCCESS,
                access_type="offline",
                prompt="consent",
            )
        except Exception as e:
            raise AuthorizationError(f"Authorization failed: {e}") from e

        self.credentials = creds
        self._save(creds)
        logger.info("Authorization complete")
        for callback in list(self._callbacks):
            callback(creds)
        return creds

    def _save(self, creds: Credentials):
        try:
            self.blob_store.save_blob(TOKENS_KEY, creds.to_json().encode("utf-8"))
            self._saved_token = creds.token
        except PersistenceError as e:
            logger.error(f"Failed to store tokens: {e}")

    def ensure_fresh(self) -> Credentials:
        """Return usable credentials, refreshing an expired access token if needed."""
        creds = self.credentials
        if creds is None:
            raise AuthorizationError("Not authorized; run `gcal-notifier login`")
        if not creds.valid:
            if not creds.refresh_token:
                raise AuthorizationError("Access token expired and no refresh token stored")
            try:
                creds.refresh(Request())
            except RefreshError as e:
                raise AuthorizationError(f"Token refresh rejected: {e}") from e
            except TransportError as e:
                raise FetchError(f"Token refresh failed: {e}") from e
        return creds

    def save_if_refreshed(self):
        creds = self.credentials
        if creds is not None and creds.token != self._saved_token:
            logger.debug("Access token refreshed, storing it")
            self._save(creds)


class GoogleCalendarSource:
    """Fetches upcoming events for a single calendar through the Calendar API v3."""

    def __init__(
        self, authorizer: GoogleAuthorizer, calendar_id: str = "primary", timeout: int = 30
    ):
        self.authorizer = authorizer
        self.calendar_id = calendar_id
        self.timeout = timeout

    def _service(self):
        creds = self.authorizer.ensure_fresh()
        http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("calendar", "v3", http=http, cache_discovery=False)

    def fetch_events(self, time_min: datetime, max_results: int = 10) -> list[CalendarEvent]:
        """Upcoming events from time_min on, ordered by start, recurring series expanded."""
        if time_min.tzinfo is None:
            time_min = time_min.astimezone()
        try:
            response = (
                self._service()
                .events()
                .list(
                    calendarId=self.calendar_id,
                    timeMin=time_min.astimezone(timezone.utc).isoformat(),
                    maxResults=max_results,
                    singleEvents=True,
                    orderBy="startTime",
                )
                .execute()
            )
        except HttpError as e:
            if e.resp.status == 401:
                raise AuthorizationError(f"Calendar API rejected the token: {e}") from e
            raise FetchError(f"Calendar API error: {e}") from e
        except RefreshError as e:
            raise AuthorizationError(f"Token refresh rejected: {e}") from e
        except (httplib2.HttpLib2Error, TransportError, OSError) as e:
            raise FetchError(f"Failed to reach Google Calendar: {e}") from e

        self.authorizer.save_if_refreshed()
        items = response.get("items", [])
        logger.debug("Fetched %d event(s)", len(items))
        return parse_events(items)
