#!/usr/bin/env python3
"""
eventfund contribution client (async)

Runs the contribution flow against a deployed server, the same steps the
browser takes:
  1) POST /api/contributions  (method=online) -> pending row + id
  2) POST /functions/create-cashfree-order    -> payment_session_id
  3) hand the session to hosted checkout (/checkout/{payment_session_id}),
     which redirects to the gateway

Each step only runs if the previous one succeeded. After the handoff the
outcome is only observable through the webhook-driven status change, which
``--wait`` polls for.

Usage:
  eventfund-contribute --base http://localhost:8000 --name Asha --amount 501
  eventfund-contribute --base https://fund.example.org --name Ravi \
                       --amount 200 --cash
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from .helpers import is_non_blank, parse_amount

logger = logging.getLogger(__name__)

FORM_ERROR = "Please enter a valid name and a positive amount."
TERMINAL = ("success", "expired")


class FlowError(Exception):
    """Aborts the flow; the message is meant for the person paying."""


@dataclass
class Handoff:
    contribution_id: int
    payment_session_id: str
    order_id: Optional[str]
    checkout_url: str


class CheckoutLauncher(ABC):
    @abstractmethod
    def launch(self, checkout_url: str) -> bool:
        """Start the hosted checkout. False if it could not be started."""


class BrowserCheckout(CheckoutLauncher):
    def launch(self, checkout_url: str) -> bool:
        return webbrowser.open(checkout_url)


class PrintCheckout(CheckoutLauncher):
    def launch(self, checkout_url: str) -> bool:
        print(f"Open this page to pay: {checkout_url}")
        return True


def validate_form(contributor: Any, amount: Any) -> Tuple[str, float]:
    value = parse_amount(amount)
    if not is_non_blank(contributor) or value is None:
        raise FlowError(FORM_ERROR)
    return contributor.strip(), value


def _error_detail(resp: httpx.Response, default: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return default


class ContributionFlow:
    def __init__(
        self,
        client: httpx.AsyncClient,
        launcher: Optional[CheckoutLauncher],
    ) -> None:
        # client carries base_url; launcher None means no checkout available
        self.client = client
        self.launcher = launcher

    async def add_cash(self, contributor: Any, amount: Any) -> Dict[str, Any]:
        name, value = validate_form(contributor, amount)
        try:
            resp = await self.client.post("/api/contributions", json={
                "contributor": name, "amount": value, "method": "cash",
            })
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("cash contribution failed: %s", e)
            raise FlowError(
                "Failed to add cash contribution. Please try again."
            )
        return resp.json()

    async def pay_online(self, contributor: Any, amount: Any) -> Handoff:
        name, value = validate_form(contributor, amount)

        # 1) pending ledger row; its id is the correlation id
        try:
            resp = await self.client.post("/api/contributions", json={
                "contributor": name, "amount": value, "method": "online",
            })
            resp.raise_for_status()
            contribution_id = int(resp.json()["id"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error("could not insert pending contribution: %s", e)
            raise FlowError(
                "Could not save your contribution record. Please try again."
            )

        # 2) order request handler -> payment session
        try:
            resp = await self.client.post(
                "/functions/create-cashfree-order",
                json={
                    "amount": value,
                    "contributor": name,
                    "contribution_id": str(contribution_id),
                },
            )
        except httpx.HTTPError as e:
            logger.error("order function unreachable: %s", e)
            raise FlowError(
                "An unknown error occurred with the payment function."
            )
        if not resp.is_success:
            raise FlowError(_error_detail(
                resp, "An unknown error occurred with the payment function."
            ))
        try:
            order = resp.json()
        except ValueError:
            order = None
        psid = order.get("payment_session_id") if isinstance(
            order, dict) else None
        if not psid:
            raise FlowError(
                "Failed to get a valid payment session from the server."
            )

        # 3) hosted checkout; nothing of ours runs after a successful redirect
        if self.launcher is None:
            raise FlowError(
                "Payment SDK (Cashfree) is not loaded. "
                "Please refresh the page."
            )
        checkout_url = str(self.client.base_url.join(f"/checkout/{psid}"))
        if not self.launcher.launch(checkout_url):
            raise FlowError("Could not open the payment page.")

        return Handoff(
            contribution_id=contribution_id,
            payment_session_id=psid,
            order_id=order.get("order_id"),
            checkout_url=checkout_url,
        )

    async def wait_for_status(
        self,
        order_id: str,
        poll_interval_s: float = 2.0,
        poll_timeout_s: float = 600.0,
    ) -> str:
        deadline = time.perf_counter() + poll_timeout_s
        status = "pending"
        while time.perf_counter() < deadline:
            try:
                g = await self.client.get(
                    "/api/payment-status", params={"order_id": order_id}
                )
                if g.status_code == 200:
                    status = g.json().get("status", status)
                    if status in TERMINAL:
                        break
            except httpx.HTTPError as e:
                logger.debug("status poll failed: %s", e)
            await asyncio.sleep(poll_interval_s)
        return status


async def run(args: argparse.Namespace) -> int:
    launcher: CheckoutLauncher = (
        PrintCheckout() if args.no_browser else BrowserCheckout()
    )
    async with httpx.AsyncClient(
        base_url=args.base,
        timeout=30.0,
        headers={"User-Agent": "eventfund-contribute/1.0"},
    ) as client:
        flow = ContributionFlow(client, launcher)
        try:
            if args.cash:
                rec = await flow.add_cash(args.name, args.amount)
                print(f"Recorded cash contribution #{rec['id']} "
                      f"({rec['status']})")
                return 0
            handoff = await flow.pay_online(args.name, args.amount)
        except FlowError as e:
            print(f"Payment process failed: {e}", file=sys.stderr)
            return 1

        print(f"Contribution #{handoff.contribution_id} pending, "
              f"order {handoff.order_id or '?'}")
        if args.wait and handoff.order_id:
            status = await flow.wait_for_status(
                handoff.order_id, poll_timeout_s=args.wait_timeout
            )
            print(f"Final status: {status}")
    return 0


def main():
    ap = argparse.ArgumentParser(description="eventfund contribution client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--name", required=True, help="Contributor name")
    ap.add_argument("--amount", required=True, help="Amount (INR)")
    ap.add_argument("--cash", action="store_true",
                    help="Record a cash contribution instead of paying")
    ap.add_argument("--no-browser", action="store_true",
                    help="Print the checkout URL instead of opening it")
    ap.add_argument("--wait", action="store_true",
                    help="Poll until the webhook settles the payment")
    ap.add_argument("--wait-timeout", type=float, default=600.0,
                    help="Max seconds to wait with --wait")
    args = ap.parse_args()
    logging.basicConfig(level=logging.WARNING)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
