import stripe
import json
import logging
from backoffice.core.config import settings
from backoffice.core.exceptions import ExternalProviderFailure, InvalidInput
from backoffice.schemas.webhooks import StripeGrant
from backoffice.utils.utils import normalize_email
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)

INVOICE_PAID_EVENTS = ("invoice.paid", "invoice.payment_succeeded")


def _plain(obj: Any) -> Any:
    """Recursively turn Stripe API objects into plain dicts and lists"""
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    if isinstance(obj, dict):
        return {key: _plain(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_plain(item) for item in obj]
    return obj


def _positive_int(value: Any) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


class StripeService:
    """
    Verifies Stripe webhooks and works out how many credits a payment buys.
    Everything here is read-only against Stripe; ledger writes happen in the
    webhook handler's transaction.
    """

    def __init__(self):
        # Same outbound bound as SignNow and email
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.provider_timeout_seconds)
        stripe.max_network_retries = 1
        if settings.stripe_secret:
            stripe.api_key = settings.stripe_secret
            self.webhook_secret = settings.stripe_webhook_secret
        else:
            # Don't raise during initialization, handle it in methods
            self.webhook_secret = settings.stripe_webhook_secret or None

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the Stripe-Signature header and return the event as a plain dict"""
        if not signature:
            raise InvalidInput("Missing Stripe signature")
        if not self.webhook_secret:
            raise InvalidInput("Stripe webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except Exception as e:
            logger.warning(f"Stripe signature verification failed: {e}")
            raise InvalidInput("Invalid Stripe signature")
        try:
            return json.loads(payload)
        except ValueError:
            raise InvalidInput("Unparseable Stripe payload")

    def price_credits(self, price_id: Optional[str]) -> int:
        if not price_id:
            return 0
        return _positive_int(settings.stripe_price_credits.get(str(price_id), 0))

    # Stripe API reads (wrapped so failures surface as provider failures)

    def list_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        try:
            items = stripe.checkout.Session.list_line_items(session_id, limit=100)
        except stripe.StripeError as e:
            raise ExternalProviderFailure("stripe", f"list line items for {session_id}: {e}")
        return _plain(items).get("data", [])

    def retrieve_price(self, price_id: str) -> Dict[str, Any]:
        try:
            return _plain(stripe.Price.retrieve(price_id, expand=["product"]))
        except stripe.StripeError as e:
            raise ExternalProviderFailure("stripe", f"retrieve price {price_id}: {e}")

    def retrieve_invoice(self, invoice_id: str) -> Dict[str, Any]:
        try:
            return _plain(stripe.Invoice.retrieve(invoice_id, expand=["lines.data.price"]))
        except stripe.StripeError as e:
            raise ExternalProviderFailure("stripe", f"retrieve invoice {invoice_id}: {e}")

    def retrieve_customer_email(self, customer_id: str) -> Optional[str]:
        try:
            customer = _plain(stripe.Customer.retrieve(customer_id))
        except stripe.StripeError as e:
            raise ExternalProviderFailure("stripe", f"retrieve customer {customer_id}: {e}")
        return customer.get("email")

    def _line_item_credits(self, line_item: Dict[str, Any]) -> int:
        quantity = line_item.get("quantity") or 1
        price = line_item.get("price") or {}
        if isinstance(price, str):
            price = {"id": price}

        per_unit = _positive_int((price.get("metadata") or {}).get("credits"))
        price_id = price.get("id")
        if not per_unit and price_id:
            try:
                full_price = self.retrieve_price(price_id)
                product = full_price.get("product") if isinstance(full_price.get("product"), dict) else {}
                per_unit = (
                    _positive_int((full_price.get("metadata") or {}).get("credits"))
                    or _positive_int((product.get("metadata") or {}).get("credits"))
                )
            except ExternalProviderFailure as e:
                # the price table below still applies
                logger.warning(f"Price lookup failed, using price table: {e}")
        if not per_unit:
            per_unit = self.price_credits(price_id)
        return per_unit * quantity

    def checkout_grant(self, session: Dict[str, Any]) -> Optional[StripeGrant]:
        """
        Credits for a completed one-time checkout, or None when the session buys
        nothing (subscription checkouts are credited via their invoices).
        Priority: session metadata, then price/product metadata, then the price table.
        """
        session_id = session.get("id")
        if session.get("mode") == "subscription":
            logger.info(f"Checkout {session_id} is a subscription; credited via invoice")
            return None
        if session.get("payment_status") and session.get("payment_status") != "paid":
            logger.info(f"Checkout {session_id} not paid ({session.get('payment_status')})")
            return None

        details = session.get("customer_details") or {}
        email = normalize_email(details.get("email") or session.get("customer_email"))
        if not email:
            raise InvalidInput(f"No customer email on checkout session {session_id}")

        credits = _positive_int((session.get("metadata") or {}).get("credits"))
        if not credits:
            credits = sum(self._line_item_credits(item) for item in self.list_line_items(session_id))

        logger.info(f"Checkout {session_id} computed {credits} credit(s) for {email}")
        if credits <= 0:
            return None
        return StripeGrant(
            source_id=session_id,
            email=email,
            credits=credits,
            reason=f"Stripe checkout ({session_id})",
            phone=details.get("phone"),
            mint_pass=True,
            stripe_session_id=session_id,
        )

    def _invoice_line_price_id(self, line: Dict[str, Any]) -> Optional[str]:
        # Stripe moves the price around between API versions
        price = line.get("price")
        if isinstance(price, dict) and price.get("id"):
            return price["id"]
        if isinstance(price, str) and price:
            return price
        details = (line.get("pricing") or {}).get("price_details") or {}
        detail_price = details.get("price")
        if isinstance(detail_price, str) and detail_price:
            return detail_price
        if isinstance(detail_price, dict) and detail_price.get("id"):
            return detail_price["id"]
        plan = line.get("plan")
        if isinstance(plan, dict) and plan.get("id"):
            return plan["id"]
        if isinstance(plan, str) and plan:
            return plan
        return None

    def invoice_grant(self, invoice: Dict[str, Any]) -> Optional[StripeGrant]:
        """Credits for a paid subscription invoice, from the price table"""
        invoice_id = invoice.get("id")
        full_invoice = self.retrieve_invoice(invoice_id) if invoice_id else invoice

        customer = full_invoice.get("customer")
        email = full_invoice.get("customer_email")
        if not email and isinstance(customer, dict):
            email = customer.get("email")
        if not email and isinstance(customer, str) and customer:
            email = self.retrieve_customer_email(customer)
        email = normalize_email(email)
        if not email:
            raise InvalidInput(f"No customer email on invoice {invoice_id}")

        credits = 0
        for line in (full_invoice.get("lines") or {}).get("data", []):
            price_id = self._invoice_line_price_id(line)
            credits += self.price_credits(price_id) * (line.get("quantity") or 1)

        logger.info(f"Invoice {invoice_id} computed {credits} credit(s) for {email}")
        if credits <= 0:
            return None
        return StripeGrant(
            source_id=invoice_id,
            email=email,
            credits=credits,
            reason=f"Stripe invoice ({invoice_id})",
            mint_pass=False,
        )

    def resolve_grant(self, event: Dict[str, Any]) -> Optional[StripeGrant]:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        if event_type == "checkout.session.completed":
            return self.checkout_grant(obj)
        if event_type in INVOICE_PAID_EVENTS:
            return self.invoice_grant(obj)
        return None


# Create a singleton instance
stripe_service = StripeService()
