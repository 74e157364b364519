"""Strava activities."""

from localhub.strava.activities import StravaActivitiesGateway, StravaActivity

__all__ = ["StravaActivitiesGateway", "StravaActivity"]
