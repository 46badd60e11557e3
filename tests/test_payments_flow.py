from decimal import Decimal

from donationdesk.payments import (
    MockPay, PaymentProviderError, RazorpayAdapter, payment_signature,
)
from donationdesk.server import app, payment_adapter

from conftest import DONOR, TEST_SECRET


class RecordingPay(MockPay):
    def __init__(self):
        super().__init__(key_secret=TEST_SECRET)
        self.calls = []

    async def create_order(self, amount, receipt):
        self.calls.append((amount, receipt))
        return await super().create_order(amount, receipt)


class FailingPay(MockPay):
    async def create_order(self, amount, receipt):
        raise PaymentProviderError("provider down")


def completion(order_id="order_mock_1", payment_id="pay_mock_1", **extra):
    data = {
        **DONOR,
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": payment_signature(
            TEST_SECRET, order_id, payment_id),
    }
    data.update(extra)
    return data


def test_pay_creates_order_and_renders_checkout(client, donations):
    pay = RecordingPay()
    app.dependency_overrides[payment_adapter] = lambda: pay

    resp = client.post("/pay", data={**DONOR, "amountINR": "500.505"})

    assert resp.status_code == 200
    [(amount, receipt)] = pay.calls
    assert amount == 50051
    assert receipt.startswith("receipt_order_")
    assert "order_mock_" in resp.text
    assert "Continue to MockPay" in resp.text
    # donor details forwarded for the verification step
    assert 'name="fullName" value="Asha Verma"' in resp.text
    assert 'name="amountINR" value="500.505"' in resp.text
    # nothing is persisted before payment
    assert donations() == []


def test_pay_with_razorpay_embeds_checkout_widget(client, donations):
    class StubRazorpay(RazorpayAdapter):
        async def create_order(self, amount, receipt):
            return {"order_id": "order_Rzp1", "key_id": self.key_id,
                    "amount": amount, "currency": self.currency}

    app.dependency_overrides[payment_adapter] = lambda: StubRazorpay(
        None, "rzp_test_key", TEST_SECRET)

    resp = client.post("/pay", data=DONOR)

    assert resp.status_code == 200
    assert "checkout.razorpay.com" in resp.text
    assert '"rzp_test_key"' in resp.text
    assert '"order_Rzp1"' in resp.text
    assert 'action="/payment-success"' in resp.text
    assert donations() == []


def test_pay_rejects_missing_or_bad_amount(client):
    pay = RecordingPay()
    app.dependency_overrides[payment_adapter] = lambda: pay

    for amount in ("", "abc", "0", "-10", "0.001", "1e30",
                   "10000000000000000000000000000"):
        resp = client.post("/pay", data={**DONOR, "amountINR": amount})
        assert resp.status_code == 400, amount
        assert resp.text == "Invalid amount"
    assert pay.calls == []


def test_pay_provider_failure_is_500_and_persists_nothing(client, donations):
    app.dependency_overrides[payment_adapter] = lambda: FailingPay(TEST_SECRET)

    resp = client.post("/pay", data=DONOR)

    assert resp.status_code == 500
    assert resp.text == "Error creating payment order"
    assert donations() == []


def test_verified_payment_is_recorded_online(client, donations):
    resp = client.post("/payment-success", data=completion(),
                       follow_redirects=False)

    assert resp.status_code == 303
    [donation] = donations()
    assert resp.headers["location"] == f"/success?id={donation.id}"
    assert donation.payment_method == "online"
    assert donation.amount_inr == Decimal("500")
    assert donation.provider_order_id == "order_mock_1"
    assert donation.provider_payment_id == "pay_mock_1"


def test_forged_signature_is_rejected(client, donations):
    data = completion()
    sig = data["razorpay_signature"]
    data["razorpay_signature"] = ("1" if sig[0] != "1" else "2") + sig[1:]

    resp = client.post("/payment-success", data=data, follow_redirects=False)

    assert resp.status_code == 400
    assert resp.text == "Payment verification failed"
    assert donations() == []


def test_signature_for_another_payment_is_rejected(client, donations):
    data = completion()
    data["razorpay_payment_id"] = "pay_mock_2"

    resp = client.post("/payment-success", data=data, follow_redirects=False)

    assert resp.status_code == 400
    assert donations() == []


def test_missing_or_malformed_fields_are_a_mismatch(client, donations):
    cases = []
    for field in ("razorpay_order_id", "razorpay_payment_id",
                  "razorpay_signature", "amountINR"):
        data = completion()
        del data[field]
        cases.append(data)
    cases.append(completion(amountINR="lots"))
    cases.append({})

    for data in cases:
        resp = client.post("/payment-success", data=data,
                           follow_redirects=False)
        assert resp.status_code == 400
        assert resp.text == "Payment verification failed"
    assert donations() == []


def test_mockpay_page_hands_back_a_valid_signature(client, adapter,
                                                   donations):
    resp = client.post("/mockpay/order_mock_42",
                       data={**DONOR, "amount": "50000"})

    assert resp.status_code == 200
    assert "500.00 INR" in resp.text
    assert 'value="order_mock_42"' in resp.text

    # submit the page's form the way the browser would
    payment_id = resp.text.split('name="razorpay_payment_id" value="')[1]
    payment_id = payment_id.split('"')[0]
    signature = resp.text.split('name="razorpay_signature" value="')[1]
    signature = signature.split('"')[0]
    assert adapter.verify_payment("order_mock_42", payment_id, signature)

    resp = client.post("/payment-success", data={
        **DONOR,
        "razorpay_order_id": "order_mock_42",
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature,
    }, follow_redirects=False)
    assert resp.status_code == 303
    [donation] = donations()
    assert donation.provider_order_id == "order_mock_42"


def test_mockpay_is_unavailable_with_real_provider(client):
    app.dependency_overrides[payment_adapter] = lambda: RazorpayAdapter(
        None, "rzp_test_key", TEST_SECRET)

    resp = client.post("/mockpay/order_mock_42", data=DONOR)
    assert resp.status_code == 404


def test_replayed_completion_is_recorded_once(client, donations):
    first = client.post("/payment-success", data=completion(),
                        follow_redirects=False)
    replay = client.post("/payment-success",
                         data=completion(amountINR="99999"),
                         follow_redirects=False)

    assert first.status_code == 303
    assert replay.status_code == 303
    assert replay.headers["location"] == first.headers["location"]
    [donation] = donations()
    assert donation.amount_inr == Decimal("500")


def test_oversized_amount_at_verification_is_a_mismatch(client, donations):
    resp = client.post("/payment-success", data=completion(amountINR="1e30"),
                       follow_redirects=False)

    assert resp.status_code == 400
    assert resp.text == "Payment verification failed"
    assert donations() == []
