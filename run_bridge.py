#!/usr/bin/env python3
"""
MT5 Bridge Operator CLI
=======================

Manual access to an MT5 account through the HTTP bridge.

The session token is persisted to the token file, so successive
invocations reuse one session. When no session is held, the CLI logs in
with MT5_LOGIN / MT5_PASSWORD / MT5_SERVER.

Environment Variables:
    MT5_API_URL: Bridge base URL
    MT5_API_KEY: Bridge API key
    MT5_LOGIN, MT5_PASSWORD, MT5_SERVER: Account credentials

Usage:
    python run_bridge.py check
    python run_bridge.py positions
    python run_bridge.py buy XAUUSD 0.01
    python run_bridge.py close 123456 --volume 0.01
"""

import argparse
import asyncio
import os
import sys

from mt5_gateway.core.config import Config
from mt5_gateway.core.exceptions import BrokerageError
from mt5_gateway.core.logger import setup_logger
from mt5_gateway.brokerages import Credentials, OrderRequest, OrderSide
from mt5_gateway.brokerages.mt5 import MT5Brokerage
from mt5_gateway.brokerages.mt5_bridge.session import FileTokenStore


def _credentials_from_env() -> Credentials:
    return Credentials(
        account_number=os.environ.get('MT5_LOGIN', ''),
        password=os.environ.get('MT5_PASSWORD', ''),
        server_name=os.environ.get('MT5_SERVER', ''),
    )


def _print_outcome(outcome) -> int:
    status = "OK" if outcome.success else f"FAILED ({outcome.retcode})"
    print(f"{status}: {outcome.message}")
    if outcome.ticket:
        print(f"  Ticket: {outcome.ticket}")
    if outcome.realized_profit is not None:
        print(f"  Profit: {outcome.realized_profit:.2f}")
    if outcome.volume_format:
        print(f"  Volume format: {outcome.volume_format}")
    return 0 if outcome.success else 1


async def _ensure_session(brokerage: MT5Brokerage) -> bool:
    if brokerage.is_connected:
        return True
    result = await brokerage.connect(_credentials_from_env())
    if not result.success:
        print(f"Connection failed: {result.message}")
    return result.success


async def run(args) -> int:
    config = Config.load(args.config)
    setup_logger(
        level="DEBUG" if args.verbose else config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )

    async with MT5Brokerage(config.bridge, token_store=FileTokenStore(config.bridge.token_file)) as brokerage:
        if args.command == 'disconnect':
            await brokerage.disconnect()
            print("Disconnected")
            return 0

        if not await _ensure_session(brokerage):
            return 1

        if args.command == 'check':
            alive = await brokerage.check_connection()
            print("Connection alive" if alive else "Connection not alive")
            return 0 if alive else 1

        if args.command == 'positions':
            positions = await brokerage.get_positions()
            if not positions:
                print("No open positions")
            for p in positions:
                print(
                    f"#{p.ticket:<10} {p.symbol:<12} {p.side.value:<4} {p.volume:>8g} lots "
                    f"@ {p.open_price:<10g} profit={p.profit:.2f}"
                    + (f" [{p.bot_token}]" if p.bot_token else "")
                )
            return 0

        if args.command == 'account':
            info = await brokerage.get_account_info()
            if info is None:
                print("Account info unavailable")
                return 1
            print(f"Account:     {info.account_number or '-'} {info.account_name or ''}")
            print(f"Balance:     {info.balance:,.2f} {info.currency or ''}")
            print(f"Equity:      {info.equity:,.2f}")
            print(f"Margin:      {info.margin:,.2f} (free {info.free_margin:,.2f})")
            print(f"Profit:      {info.profit:,.2f}")
            return 0

        if args.command == 'quote':
            quote = await brokerage.get_quote(args.symbol)
            if quote is None:
                print(f"No quote for {args.symbol}")
                return 1
            print(f"{quote.symbol}: bid={quote.bid} ask={quote.ask} spread={quote.spread:.5f} ({quote.time})")
            return 0

        if args.command in ('buy', 'sell'):
            request = OrderRequest(
                symbol=args.symbol,
                side=OrderSide.BUY if args.command == 'buy' else OrderSide.SELL,
                volume=args.volume,
                stop_loss=args.sl,
                take_profit=args.tp,
                comment=args.comment or "",
            )
            return _print_outcome(await brokerage.send_order(request))

        if args.command == 'close':
            return _print_outcome(await brokerage.close_position(args.ticket, args.volume))

    return 2


def main():
    parser = argparse.ArgumentParser(
        description='Operate an MT5 account through the HTTP bridge',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_bridge.py check
    python run_bridge.py quote EURUSD
    python run_bridge.py sell EURUSD 0.1 --sl 1.0950
    python run_bridge.py close 123456
        """
    )
    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to config file'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Debug logging (shows each close attempt)'
    )

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('check', help='Connection liveness probe')
    commands.add_parser('positions', help='List open positions')
    commands.add_parser('account', help='Account summary')
    commands.add_parser('disconnect', help='End the session and forget the token')

    quote = commands.add_parser('quote', help='Current bid/ask')
    quote.add_argument('symbol')

    for side in ('buy', 'sell'):
        order = commands.add_parser(side, help=f'Market {side} order')
        order.add_argument('symbol')
        order.add_argument('volume', type=float, help='Volume in lots')
        order.add_argument('--sl', type=float, help='Stop loss price')
        order.add_argument('--tp', type=float, help='Take profit price')
        order.add_argument('--comment', help='Order comment')

    close = commands.add_parser('close', help='Close a position by ticket')
    close.add_argument('ticket', type=int)
    close.add_argument('--volume', type=float, help='Volume to close (default: whole position)')

    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run(args)))
    except BrokerageError as e:
        print(f"Error: {e.reason}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
