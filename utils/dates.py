"""
Date helpers shared by the ledger, the quiz scorer and the store adapters
"""

from datetime import date, datetime, timedelta

from dateutil import parser as date_parser
import pytz

def utcnow():
    return datetime.now(pytz.utc)

def today(tz_name='UTC'):
    """
    Current calendar date in the given timezone
    """
    return datetime.now(pytz.timezone(tz_name)).date()

def yesterday(day):
    return day - timedelta(days=1)

def date_key(day):
    """
    Render a calendar date as the YYYY-MM-DD key stored on progress records
    """
    return parse_date(day).isoformat() if day else ''

def parse_date(value):
    """
    Accept a date, a datetime or an ISO string and return a date (or None)
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date_parser.isoparse(str(value)).date()

def parse_timestamp(value):
    """
    Accept a datetime, an epoch number or an ISO string and return an aware UTC datetime
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, pytz.utc)
    else:
        moment = date_parser.isoparse(str(value))

    # Firestore hands back aware datetimes; naive ones are treated as UTC
    if moment.tzinfo is None:
        return pytz.utc.localize(moment)
    return moment.astimezone(pytz.utc)
