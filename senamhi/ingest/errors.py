"""Errors raised while fetching and persisting the forecast."""


class FetchError(Exception):
    """Base class for any failure that prevents serving fresh data."""


class SessionLaunchFailure(FetchError):
    """The browser session could not be started."""


class NavigationTimeout(FetchError):
    """Loading the forecast page exceeded the navigation timeout."""


class NavigationError(FetchError):
    """Navigation failed for a reason other than a timeout."""


class ReadinessTimeout(FetchError):
    """The forecast table did not appear before the readiness timeout."""


class PersistError(FetchError):
    """A fetched snapshot could not be written to the cache file."""
