"""SQLite storage for photo wall memories and recycling requests."""

import os
import sqlite3
from typing import Any, Dict, List, Optional, Union

from vulnshop.config import DATABASE_PATH


def get_db_connection(database_path: Optional[str] = None) -> sqlite3.Connection:
    """Get a connection to the SQLite database."""
    conn = sqlite3.connect(database_path or DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(database_path: Optional[str] = None) -> None:
    """Initialize the database with tables and seed data."""
    database_path = database_path or DATABASE_PATH
    os.makedirs(os.path.dirname(os.path.abspath(database_path)), exist_ok=True)

    conn = get_db_connection(database_path)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS memories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            caption TEXT,
            image_path TEXT NOT NULL,
            user_id INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS recycles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            quantity INTEGER,
            address TEXT,
            is_pickup INTEGER DEFAULT 0,
            pickup_date TEXT
        )
    ''')

    # Seed recycling requests
    recycles = [
        (1, 1, 800, 'Pickup at the loading dock', 1, '2270-01-17'),
        (2, 2, 320, 'Drop-off at the recycling station', 0, None),
        (3, 3, 100, 'Pickup at the back door', 1, '2006-01-14'),
    ]

    for recycle in recycles:
        cursor.execute(
            'INSERT OR IGNORE INTO recycles (id, user_id, quantity, address, is_pickup, pickup_date) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            recycle
        )

    conn.commit()
    conn.close()


def reset_db(database_path: Optional[str] = None) -> None:
    """Reset the database to initial state."""
    database_path = database_path or DATABASE_PATH
    if os.path.exists(database_path):
        os.remove(database_path)
    init_db(database_path)


def _memory_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "caption": row["caption"],
        "imagePath": row["image_path"],
        "UserId": row["user_id"],
        "createdAt": row["created_at"],
    }


def create_memory(
    caption: Optional[str],
    image_path: str,
    user_id: Optional[int],
    database_path: Optional[str] = None
) -> Dict[str, Any]:
    """Store a memory and return it."""
    conn = get_db_connection(database_path)
    try:
        cursor = conn.execute(
            'INSERT INTO memories (caption, image_path, user_id) VALUES (?, ?, ?)',
            (caption, image_path, user_id)
        )
        conn.commit()
        row = conn.execute('SELECT * FROM memories WHERE id = ?', (cursor.lastrowid,)).fetchone()
        return _memory_to_dict(row)
    finally:
        conn.close()


def get_memories(database_path: Optional[str] = None) -> List[Dict[str, Any]]:
    conn = get_db_connection(database_path)
    try:
        rows = conn.execute('SELECT * FROM memories ORDER BY id').fetchall()
        return [_memory_to_dict(row) for row in rows]
    finally:
        conn.close()


def find_recycles(
    recycle_id: Union[int, str],
    database_path: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Find recycling requests by id."""
    conn = get_db_connection(database_path)
    try:
        rows = conn.execute('SELECT * FROM recycles WHERE id = ?', (recycle_id,)).fetchall()
        return [
            {
                "id": row["id"],
                "UserId": row["user_id"],
                "quantity": row["quantity"],
                "address": row["address"],
                "isPickup": bool(row["is_pickup"]),
                "date": row["pickup_date"],
            }
            for row in rows
        ]
    finally:
        conn.close()
