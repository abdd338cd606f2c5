"""
SQLite database integration and a small migration system.

This module provides ``get_connection`` for services, ``get_cursor``
as a context manager for short scripts and ``init_db`` which applies
pending migrations on application start.  Applied versions are stored
in the ``migrations`` table and new migrations are executed in order.

Default roles and the subscription plan catalogue are seeded with
``INSERT OR IGNORE`` so that restarts never duplicate them and manual
edits to plan prices survive.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import settings


logger = logging.getLogger(__name__)


def get_database_path() -> str:
    """Compute the path to the SQLite database file.

    Absolute paths from ``settings.database_url`` are used as is;
    relative ones are resolved against the project root.
    """
    db_url = settings.database_url
    if os.path.isabs(db_url):
        return db_url
    base_dir = Path(__file__).resolve().parent.parent.parent  # loconomy_api/
    return str((base_dir / db_url).resolve())


def get_connection() -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    Rows are returned as ``sqlite3.Row`` so columns can be accessed by
    name.  Timestamps are stored and returned as ISO strings.
    """
    conn = sqlite3.connect(get_database_path())
    conn.row_factory = sqlite3.Row
    # Foreign keys are off by default in SQLite and must be enabled per
    # connection for the ON DELETE clauses below to apply.
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor() -> Iterator[sqlite3.Cursor]:
    """Yield a cursor, committing and closing the connection on exit."""
    conn = get_connection()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


def like_pattern(text: str) -> str:
    """Wrap ``text`` in ``%`` wildcards for a ``LIKE ? ESCAPE '\\'`` clause."""
    escaped = text.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


MIGRATIONS: list[tuple[int, str]] = [
    # Migration 1: accounts, roles and tenant workspaces
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS roles (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            permissions TEXT
        );

        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            full_name TEXT,
            password TEXT,
            role_id INTEGER NOT NULL DEFAULT 3,
            locale TEXT NOT NULL DEFAULT 'en',
            phone TEXT,
            city TEXT,
            bio TEXT,
            social_provider TEXT DEFAULT 'internal',
            social_id TEXT,
            disabled INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(role_id) REFERENCES roles(id)
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_users_social
            ON users(social_provider, social_id) WHERE social_id IS NOT NULL;

        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            token TEXT NOT NULL UNIQUE,
            user_id INTEGER NOT NULL,
            expires_at TIMESTAMP NOT NULL,
            user_agent TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS workspaces (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            type TEXT NOT NULL DEFAULT 'city',
            status TEXT NOT NULL DEFAULT 'active',
            owner_id INTEGER NOT NULL,
            city TEXT,
            country TEXT,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            commission_rate REAL NOT NULL DEFAULT 10,
            currency TEXT NOT NULL DEFAULT 'USD',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(owner_id) REFERENCES users(id)
        );

        CREATE TABLE IF NOT EXISTS workspace_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            workspace_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL DEFAULT 'member',
            joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(workspace_id, user_id),
            FOREIGN KEY(workspace_id) REFERENCES workspaces(id) ON DELETE CASCADE,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        );
        """,
    ),
    # Migration 2: listings and provider calendars
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS listings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id INTEGER NOT NULL,
            workspace_id INTEGER,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            category TEXT NOT NULL,
            subcategory TEXT,
            tags TEXT,
            pricing_type TEXT NOT NULL DEFAULT 'fixed',
            base_price REAL,
            hourly_rate REAL,
            minimum_hours REAL,
            duration_minutes INTEGER,
            location_type TEXT NOT NULL DEFAULT 'on_site',
            service_areas TEXT,
            max_bookings_per_day INTEGER,
            advance_booking_days INTEGER NOT NULL DEFAULT 30,
            cancellation_policy TEXT,
            status TEXT NOT NULL DEFAULT 'draft',
            rejection_reason TEXT,
            is_featured INTEGER NOT NULL DEFAULT 0,
            view_count INTEGER NOT NULL DEFAULT 0,
            booking_count INTEGER NOT NULL DEFAULT 0,
            published_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(provider_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(workspace_id) REFERENCES workspaces(id) ON DELETE SET NULL
        );
        CREATE INDEX IF NOT EXISTS idx_listings_provider ON listings(provider_id);
        CREATE INDEX IF NOT EXISTS idx_listings_status_category ON listings(status, category);

        CREATE TABLE IF NOT EXISTS provider_availability (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id INTEGER NOT NULL,
            day_of_week TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            is_available INTEGER NOT NULL DEFAULT 1,
            break_duration_minutes INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(provider_id) REFERENCES users(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_availability_provider ON provider_availability(provider_id);

        CREATE TABLE IF NOT EXISTS availability_overrides (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT,
            end_time TEXT,
            availability_type TEXT NOT NULL,
            reason TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(provider_id) REFERENCES users(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_overrides_provider_date ON availability_overrides(provider_id, date);
        """,
    ),
    # Migration 3: bookings, their message threads and reviews
    (
        3,
        """
        CREATE TABLE IF NOT EXISTS bookings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            listing_id INTEGER NOT NULL,
            provider_id INTEGER NOT NULL,
            customer_id INTEGER NOT NULL,
            booking_date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_minutes INTEGER NOT NULL,
            service_title TEXT NOT NULL,
            special_requests TEXT,
            base_price REAL NOT NULL,
            service_fee REAL NOT NULL,
            total_amount REAL NOT NULL,
            currency TEXT NOT NULL DEFAULT 'USD',
            status TEXT NOT NULL DEFAULT 'pending',
            confirmation_code TEXT NOT NULL UNIQUE,
            cancellation_reason TEXT,
            customer_notes TEXT,
            provider_notes TEXT,
            location_type TEXT,
            confirmed_at TIMESTAMP,
            started_at TIMESTAMP,
            completed_at TIMESTAMP,
            cancelled_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(listing_id) REFERENCES listings(id) ON DELETE CASCADE,
            FOREIGN KEY(provider_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(customer_id) REFERENCES users(id) ON DELETE CASCADE
        );
        CREATE INDEX IF NOT EXISTS idx_bookings_provider_date ON bookings(provider_id, booking_date);
        CREATE INDEX IF NOT EXISTS idx_bookings_customer ON bookings(customer_id);

        CREATE TABLE IF NOT EXISTS booking_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            booking_id INTEGER NOT NULL,
            sender_id INTEGER,
            message_text TEXT NOT NULL,
            message_type TEXT NOT NULL DEFAULT 'text',
            is_system_message INTEGER NOT NULL DEFAULT 0,
            system_event_type TEXT,
            read_by TEXT NOT NULL DEFAULT '[]',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(booking_id) REFERENCES bookings(id) ON DELETE CASCADE,
            FOREIGN KEY(sender_id) REFERENCES users(id) ON DELETE SET NULL
        );
        CREATE INDEX IF NOT EXISTS idx_booking_messages_booking ON booking_messages(booking_id);

        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            booking_id INTEGER NOT NULL,
            listing_id INTEGER NOT NULL,
            reviewer_id INTEGER NOT NULL,
            reviewee_id INTEGER NOT NULL,
            rating INTEGER NOT NULL,
            review_text TEXT,
            category_ratings TEXT,
            is_public INTEGER NOT NULL DEFAULT 1,
            approved INTEGER NOT NULL DEFAULT 0,
            moderated_by INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(booking_id, reviewer_id),
            FOREIGN KEY(booking_id) REFERENCES bookings(id) ON DELETE CASCADE,
            FOREIGN KEY(listing_id) REFERENCES listings(id) ON DELETE CASCADE,
            FOREIGN KEY(reviewer_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(reviewee_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(moderated_by) REFERENCES users(id) ON DELETE SET NULL
        );
        CREATE INDEX IF NOT EXISTS idx_reviews_listing ON reviews(listing_id);
        CREATE INDEX IF NOT EXISTS idx_reviews_reviewee ON reviews(reviewee_id);

        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            booking_id INTEGER,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(booking_id) REFERENCES bookings(id) ON DELETE SET NULL
        );
        CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read);
        """,
    ),
    # Migration 4: subscription billing mirrored from Stripe
    (
        4,
        """
        CREATE TABLE IF NOT EXISTS subscription_plans (
            plan_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            price_monthly REAL NOT NULL,
            price_yearly REAL NOT NULL,
            stripe_price_id_monthly TEXT,
            stripe_price_id_yearly TEXT,
            features TEXT NOT NULL,
            limits TEXT NOT NULL,
            display_order INTEGER NOT NULL DEFAULT 0,
            is_featured INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS user_subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            plan_id TEXT NOT NULL,
            status TEXT NOT NULL,
            billing_cycle TEXT NOT NULL DEFAULT 'monthly',
            stripe_customer_id TEXT,
            stripe_subscription_id TEXT UNIQUE,
            stripe_price_id TEXT,
            current_period_start TIMESTAMP,
            current_period_end TIMESTAMP,
            trial_end TIMESTAMP,
            cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
            canceled_at TIMESTAMP,
            ended_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(plan_id) REFERENCES subscription_plans(plan_id)
        );
        CREATE INDEX IF NOT EXISTS idx_user_subscriptions_user ON user_subscriptions(user_id);

        CREATE TABLE IF NOT EXISTS invoices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            subscription_id INTEGER,
            stripe_invoice_id TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL,
            amount_due REAL NOT NULL DEFAULT 0,
            amount_paid REAL NOT NULL DEFAULT 0,
            currency TEXT NOT NULL DEFAULT 'usd',
            paid_at TIMESTAMP,
            hosted_invoice_url TEXT,
            invoice_pdf TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(subscription_id) REFERENCES user_subscriptions(id) ON DELETE SET NULL
        );

        CREATE TABLE IF NOT EXISTS payment_methods (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            stripe_payment_method_id TEXT NOT NULL UNIQUE,
            stripe_customer_id TEXT,
            type TEXT NOT NULL,
            card_brand TEXT,
            card_last4 TEXT,
            card_exp_month INTEGER,
            card_exp_year INTEGER,
            is_default INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS subscription_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            stripe_event_id TEXT,
            event_type TEXT NOT NULL,
            user_id INTEGER,
            processed INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        CREATE INDEX IF NOT EXISTS idx_subscription_events_stripe ON subscription_events(stripe_event_id);
        """,
    ),
    # Migration 5: consent and privacy (GDPR)
    (
        5,
        """
        CREATE TABLE IF NOT EXISTS consent_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            session_id TEXT,
            status TEXT NOT NULL,
            necessary INTEGER NOT NULL DEFAULT 1,
            analytics INTEGER NOT NULL DEFAULT 0,
            marketing INTEGER NOT NULL DEFAULT 0,
            preferences INTEGER NOT NULL DEFAULT 0,
            version TEXT NOT NULL,
            ip_address TEXT,
            user_agent TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE SET NULL
        );
        CREATE INDEX IF NOT EXISTS idx_consent_user ON consent_records(user_id);
        CREATE INDEX IF NOT EXISTS idx_consent_session ON consent_records(session_id);

        CREATE TABLE IF NOT EXISTS privacy_settings (
            user_id INTEGER PRIMARY KEY,
            email_marketing INTEGER NOT NULL DEFAULT 0,
            sms_marketing INTEGER NOT NULL DEFAULT 0,
            push_notifications INTEGER NOT NULL DEFAULT 1,
            data_analytics INTEGER NOT NULL DEFAULT 1,
            personalized_ads INTEGER NOT NULL DEFAULT 0,
            third_party_sharing INTEGER NOT NULL DEFAULT 0,
            profile_visibility TEXT NOT NULL DEFAULT 'limited',
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS data_requests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            request_type TEXT NOT NULL,
            categories TEXT NOT NULL,
            reason TEXT,
            status TEXT NOT NULL DEFAULT 'completed',
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            completed_at TIMESTAMP
        );
        """,
    ),
    # Migration 6: runtime settings and the audit trail
    (
        6,
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            type TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            action TEXT NOT NULL,
            object_type TEXT,
            object_id INTEGER,
            timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            details TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_audit_logs_object ON audit_logs(object_type, object_id);
        """,
    ),
]


DEFAULT_ROLES: list[tuple[int, str, list[str]]] = [
    (1, "admin", ["admin:all"]),
    (2, "provider", ["write:listings", "read:bookings"]),
    (3, "consumer", ["read:listings", "write:bookings"]),
]

# (plan_id, name, description, monthly, yearly, features, limits, order, featured)
DEFAULT_PLANS: list[tuple] = [
    (
        "free",
        "Free",
        "Get started with a few listings",
        0,
        0,
        {"basic_listings": True, "basic_analytics": True, "customer_support": True},
        {"max_listings": 3, "max_bookings_per_month": 25, "max_images_per_listing": 5, "ai_credits_per_month": 0},
        1,
        0,
    ),
    (
        "starter",
        "Starter",
        "For independent providers growing their business",
        29,
        290,
        {"basic_listings": True, "basic_analytics": True, "customer_support": True, "ai_assistance": True},
        {"max_listings": 25, "max_bookings_per_month": 100, "max_images_per_listing": 10, "ai_credits_per_month": 100},
        2,
        0,
    ),
    (
        "professional",
        "Professional",
        "Advanced analytics and priority support",
        79,
        790,
        {
            "unlimited_listings": False,
            "basic_listings": True,
            "advanced_analytics": True,
            "priority_support": True,
            "ai_assistance": True,
            "custom_branding": True,
        },
        {"max_listings": 100, "max_bookings_per_month": 500, "max_images_per_listing": 20, "ai_credits_per_month": 1000},
        3,
        1,
    ),
    (
        "enterprise",
        "Enterprise",
        "Unlimited scale, API access and white label",
        199,
        1990,
        {
            "unlimited_listings": True,
            "basic_listings": True,
            "advanced_analytics": True,
            "priority_support": True,
            "ai_assistance": True,
            "custom_branding": True,
            "api_access": True,
            "white_label": True,
        },
        {"max_listings": -1, "max_bookings_per_month": -1, "max_images_per_listing": 50, "ai_credits_per_month": -1},
        4,
        0,
    ),
]


def init_db() -> None:
    """Initialise the database and apply pending migrations.

    Creates the ``migrations`` table if needed, applies every migration
    whose version is newer than the recorded one and seeds roles and
    subscription plans.  Append new migrations to ``MIGRATIONS`` with
    an incremented version number.
    """
    with get_cursor() as cursor:
        cursor.execute("CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)")
        cursor.execute("SELECT MAX(version) as version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in MIGRATIONS:
            if version > current_version:
                logger.info("Applying database migration %s", version)
                cursor.executescript(sql)
                cursor.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
                current_version = version

        for role_id, name, permissions in DEFAULT_ROLES:
            cursor.execute(
                "INSERT OR IGNORE INTO roles (id, name, permissions) VALUES (?, ?, ?)",
                (role_id, name, json.dumps(permissions)),
            )

        for plan_id, name, description, monthly, yearly, features, limits, order, featured in DEFAULT_PLANS:
            cursor.execute(
                """
                INSERT OR IGNORE INTO subscription_plans
                    (plan_id, name, description, price_monthly, price_yearly, features, limits, display_order, is_featured)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (plan_id, name, description, monthly, yearly, json.dumps(features), json.dumps(limits), order, featured),
            )
