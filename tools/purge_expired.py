import argparse

from app import create_app
from config_loader import load_settings


def main():
    parser = argparse.ArgumentParser(
        description="Delete every expired secret once, without starting the web server."
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database to sweep (default: DATABASE_URL or sqlite:///onceread.db)",
    )
    args = parser.parse_args()

    settings = load_settings()
    settings["scheduler_enabled"] = False
    if args.database_url:
        settings["database_url"] = args.database_url

    app = create_app(settings)
    with app.app_context():
        removed = app.extensions["onceread"]["sweeper"].sweep()
    print(f"Removed {removed} expired secret(s) from {settings['database_url']}.")


if __name__ == "__main__":
    main()
