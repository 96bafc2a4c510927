#!/usr/bin/env python3
"""
Initialize Database Script
Usage: python3 scripts/init_db.py [schema_file]

Creates the clients, telemetry and incidents tables (idempotent).
Connection settings come from DB_* environment variables / .env.
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

import mysql.connector

from clientpulse.models import init_db_pool, get_db_connection

DEFAULT_SCHEMA = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    'clientpulse', 'schema.sql'
)


def split_statements(sql):
    """Split a schema file into statements, dropping comment-only lines"""
    lines = [line for line in sql.splitlines() if not line.strip().startswith('--')]
    return [stmt.strip() for stmt in '\n'.join(lines).split(';') if stmt.strip()]


def init_db(schema_file=DEFAULT_SCHEMA):
    """Create all tables from the schema file"""
    with open(schema_file) as f:
        statements = split_statements(f.read())

    init_db_pool()
    conn = get_db_connection()
    cursor = conn.cursor()

    try:
        for statement in statements:
            cursor.execute(statement)
        conn.commit()
    except mysql.connector.Error as e:
        conn.rollback()
        print(f"Error: {e}")
        return False
    finally:
        cursor.close()
        conn.close()

    print(f"Database initialized ({len(statements)} statements from {schema_file})")
    return True


def main():
    schema_file = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_SCHEMA

    if not os.path.exists(schema_file):
        print(f"Error: Schema file not found: {schema_file}")
        sys.exit(1)

    if not init_db(schema_file):
        sys.exit(1)


if __name__ == '__main__':
    main()
