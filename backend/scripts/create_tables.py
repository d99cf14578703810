import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from settings import settings
from db import init_schema

print('Connecting to', settings.db_url)
init_schema()
print('DDL applied: health_events, checkin_submissions, daily_checkins')
