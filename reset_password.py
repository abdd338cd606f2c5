#!/usr/bin/env python3
"""
Reset a user's password in the Loconomy SQLite database.

This script DOES NOT read or reveal any existing passwords.  It sets a
new password hash in the same format the API uses (PBKDF2-HMAC-SHA256,
"salthex$hashhex") for the specified user email and signs the user out
of every cookie session.

Usage:
    python reset_password.py --db ./loconomy_api/loconomy.db --email admin@example.com --password "NewStrongPass!234"

If --password is omitted, you will be prompted to enter it securely.
"""

import argparse
import getpass
import os
import sqlite3
import sys

from loconomy_api.app.core.security import hash_password


MIN_PASSWORD_LENGTH = 8


def main():
    ap = argparse.ArgumentParser(description="Reset Loconomy user password (SQLite).")
    ap.add_argument("--db", required=True, help="Path to SQLite DB file (e.g., ./loconomy_api/loconomy.db)")
    ap.add_argument("--email", required=True, help="User email to update")
    ap.add_argument("--password", help="New password. If omitted, you'll be prompted securely.")
    args = ap.parse_args()

    if not os.path.exists(args.db):
        print(f"[!] DB not found: {args.db}", file=sys.stderr)
        sys.exit(1)

    new_password = args.password or getpass.getpass("Enter NEW password: ")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        print(f"[!] Password must be at least {MIN_PASSWORD_LENGTH} characters.", file=sys.stderr)
        sys.exit(1)

    email = args.email.strip().lower()
    conn = sqlite3.connect(args.db)
    try:
        cur = conn.cursor()
        cur.execute("SELECT id FROM users WHERE email = ?", (email,))
        row = cur.fetchone()
        if not row:
            print(f"[!] No user found with email: {email}", file=sys.stderr)
            sys.exit(2)

        cur.execute(
            "UPDATE users SET password = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (hash_password(new_password), row[0]),
        )
        cur.execute("DELETE FROM sessions WHERE user_id = ?", (row[0],))
        conn.commit()
        print(f"[+] Password updated for user: {email}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
