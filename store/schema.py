"""
store/schema.py -- Table definitions shared by every record store consumer.

Tables are SQLAlchemy Core Table objects, so callers address them (and their
columns) as typed identifiers: users.c.remember_token rather than the string
"remember_token". A typo becomes an AttributeError at import time instead of
a broken statement at request time.

Column names keep the historical camelCase of the users/logs tables
(firstName, dateTime, userID, ...) so existing databases map without a
migration.
"""

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("remember_token", String(64)),  # single active remember-me token
    Column("token", String(128)),  # password recovery token
    Column("email", String(255)),
    Column("firstName", String(100)),
    Column("lastName", String(100)),
    Column("mfa_required", Integer, nullable=False, server_default="0"),
    Index("ix_users_remember_token", "remember_token"),
)

logs = Table(
    "logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("dateTime", String(32), nullable=False),
    Column("userID", Integer),
    Column("userIP", String(64)),
    Column("userOS", String(64)),
    Column("userBrowser", String(64)),
    Column("page", String(50)),
    Column("actionType", String(30)),
    Column("activityStatus", String(20)),
    Column("description", Text),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),  # opaque id carried in the session cookie
    Column("logged_in", Integer, nullable=False, server_default="0"),
    Column("user_id", Integer),
    Column("mfa_required", Integer, nullable=False, server_default="0"),
    Column("updated_at", String(32), nullable=False),
)
