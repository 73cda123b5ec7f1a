"""CLI tool for admin operations.

Usage:
    python -m tradesim.cli create-user [--totp]
    python -m tradesim.cli backtest ASSET START END [CAPITAL]
"""

import asyncio
import getpass
import sys
from datetime import datetime

from sqlmodel import Session, select

from tradesim.config import settings
from tradesim.database import engine, create_db_and_tables
from tradesim.engine.lifecycle import RunLifecycleManager
from tradesim.engine.runner import execute_backtest
from tradesim.models.user import User
from tradesim.schemas.trading_run import BacktestRequest
from tradesim.services.auth import hash_password, generate_totp_secret, get_totp_uri
from tradesim.services.container import build_services
from tradesim.utils.errors import TradingError
from tradesim.utils.logging import setup_logging


def create_user(with_totp: bool = False):
    """Create a user, optionally with TOTP setup."""
    create_db_and_tables()

    username = input("Username: ").strip()
    if not username:
        print("Username cannot be empty.")
        sys.exit(1)

    with Session(engine) as session:
        existing = session.exec(select(User).where(User.username == username)).first()
        if existing:
            print(f"User '{username}' already exists.")
            sys.exit(1)

    password = getpass.getpass("Password: ")
    password_confirm = getpass.getpass("Confirm password: ")
    if password != password_confirm:
        print("Passwords do not match.")
        sys.exit(1)

    totp_secret = generate_totp_secret() if with_totp else None
    user = User(
        username=username,
        hashed_password=hash_password(password),
        totp_secret=totp_secret,
    )

    with Session(engine) as session:
        session.add(user)
        session.commit()

    print(f"\nUser '{username}' created successfully.")
    if totp_secret:
        print(f"\nTOTP Secret: {totp_secret}")
        print(f"TOTP URI: {get_totp_uri(totp_secret, username)}")


def run_backtest(asset: str, start: str, end: str, capital: float = 10_000.0):
    """Run a backtest synchronously and print its summary."""
    setup_logging()
    create_db_and_tables()
    services = build_services(settings)

    try:
        request = BacktestRequest(
            asset=asset,
            start_date=datetime.fromisoformat(start),
            end_date=datetime.fromisoformat(end),
            starting_capital=capital,
        )
    except ValueError as e:
        print(f"Invalid backtest arguments: {e}")
        sys.exit(1)

    try:
        with Session(engine) as session:
            run = RunLifecycleManager(session, settings).create(
                request.to_run_create(), model_version=services.predictions.model_version
            )
        run = asyncio.run(execute_backtest(run.id, services))
    except TradingError as e:
        print(f"Backtest failed: {e.message}")
        sys.exit(1)

    win_rate = f"{run.win_rate:.1f}%" if run.win_rate is not None else "n/a"
    print(f"\nBacktest {run.id} ({run.asset}, {run.bar_interval} bars)")
    print(f"  Starting capital: {run.starting_capital:,.2f}")
    print(f"  Final capital:    {run.final_capital:,.2f}")
    print(f"  Total return:     {run.total_return:.2f}%")
    print(f"  Max drawdown:     {run.max_drawdown:.2f}%")
    print(f"  Trades:           {run.total_trades} (win rate {win_rate})")


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m tradesim.cli <command>")
        print("Commands: create-user [--totp], backtest ASSET START END [CAPITAL]")
        sys.exit(1)

    command = sys.argv[1]
    if command == "create-user":
        create_user(with_totp="--totp" in sys.argv[2:])
    elif command == "backtest":
        if len(sys.argv) < 5:
            print("Usage: python -m tradesim.cli backtest ASSET START END [CAPITAL]")
            sys.exit(1)
        capital = float(sys.argv[5]) if len(sys.argv) > 5 else 10_000.0
        run_backtest(sys.argv[2], sys.argv[3], sys.argv[4], capital)
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
