"""
End-to-end WebSocket flow.

WHAT: Vendor and customer sockets through session, cart, negotiation and gateway payment
WHY: The transport must deliver every state change to both parties in publish order
HOW: TestClient WebSocket sessions plus the HTTP payment callback
"""

import pytest

from tests.fixtures.marketplace import SAMPLE_PRODUCTS

WS_PATH = "/api/v1/ws"


def send(ws, event, **data):
    ws.send_json({"event": event, "data": data})


def receive_until(ws, event, limit=20):
    """Frames up to and including the first one named `event`."""
    frames = []
    for _ in range(limit):
        frame = ws.receive_json()
        frames.append(frame)
        if frame["event"] == event:
            return frames
    raise AssertionError(f"{event} not received; got {[f['event'] for f in frames]}")


@pytest.mark.integration
class TestWebSocketFlow:

    def test_session_lifecycle(self, client, runtime, payment_gateway):
        with client.websocket_connect(WS_PATH) as vendor_ws:
            send(vendor_ws, "create-session", language="en", location="Mumbai", products=SAMPLE_PRODUCTS)
            created = vendor_ws.receive_json()
            assert created["event"] == "session-created"
            assert created["seq"] is None
            code = created["data"]["session_code"]
            assert vendor_ws.receive_json()["event"] == "inventory-updated"

            with client.websocket_connect(WS_PATH) as customer_ws:
                send(customer_ws, "join-session", session_code=code, language="hi")
                joined = customer_ws.receive_json()
                assert joined["event"] == "session-joined"
                assert joined["data"]["session"]["customer_language"] == "hi"
                assert vendor_ws.receive_json()["event"] == "customer-joined"

                # Cart
                send(customer_ws, "cart-item-added", product_id="tomato", quantity=2)
                cart = receive_until(vendor_ws, "customer-cart-updated")[-1]
                assert cart["data"]["cart_total"] == 100

                # Negotiation: above the floor goes to the vendor
                send(customer_ws, "propose-price", product_id="tomato", proposed_price=35, round=1)
                update = receive_until(vendor_ws, "negotiation-update")[-1]
                assert update["data"]["floor_price"] == 30
                customer_update = receive_until(customer_ws, "negotiation-update")[-1]
                assert "floor_price" not in customer_update["data"]

                send(
                    vendor_ws, "respond-negotiation",
                    product_id="tomato", negotiation_id=update["data"]["negotiation_id"], response="accept",
                )
                response = receive_until(customer_ws, "negotiation-response")[-1]
                assert response["data"]["status"] == "accepted"

                # Gateway payment
                send(customer_ws, "gateway-payment-initiate", total=70)
                order = receive_until(customer_ws, "gateway-order-created")[-1]["data"]["order"]
                assert order["amount"] == 70

                callback = client.post(
                    f"/api/v1/sessions/{code}/payments/verify",
                    json={
                        "order_id": order["order_id"],
                        "payment_id": "pay_ws_1",
                        "signature": payment_gateway.sign(order["order_id"], "pay_ws_1"),
                    },
                )
                assert callback.status_code == 200
                assert callback.json()["stock_after"] == {"tomato": 8}

                frames = receive_until(vendor_ws, "sale-completed")
                assert frames[-1]["data"]["total"] == 70
                confirmed = receive_until(customer_ws, "payment-confirmed")[-1]
                assert confirmed["data"]["payment_ref"] == frames[-1]["data"]["payment_ref"]

                again = client.post(
                    f"/api/v1/sessions/{code}/payments/verify",
                    json={
                        "order_id": order["order_id"],
                        "payment_id": "pay_ws_1",
                        "signature": payment_gateway.sign(order["order_id"], "pay_ws_1"),
                    },
                )
                assert again.json()["duplicate"] is True

            # Customer socket closed
            left = receive_until(vendor_ws, "user-disconnected")[-1]
            assert left["data"] == {"role": "customer"}

        assert runtime.store.get(code).products["tomato"].stock == 8
        assert runtime.store.get(code).status.value == "disconnected"

    def test_vendor_frames_arrive_in_sequence_order(self, client):
        with client.websocket_connect(WS_PATH) as vendor_ws:
            send(vendor_ws, "create-session", products=SAMPLE_PRODUCTS)
            code = vendor_ws.receive_json()["data"]["session_code"]
            send(vendor_ws, "vendor-price-edit", product_id="tomato", new_price=45)
            send(vendor_ws, "vendor-stock-edit", product_id="onion", new_quantity=8)
            send(vendor_ws, "get-products")

            frames = receive_until(vendor_ws, "products")

        seqs = [f["seq"] for f in frames if f["seq"] is not None]
        assert seqs == sorted(seqs)
        assert len(seqs) == len(set(seqs))
        products = {p["id"]: p for p in frames[-1]["data"]["products"]}
        assert products["tomato"]["vendor_price"] == 45
        assert products["onion"]["stock"] == 8
        assert all(f["session_code"] == code for f in frames)

    def test_errors_come_back_on_the_socket(self, client):
        with client.websocket_connect(WS_PATH) as ws:
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "session-error"

            send(ws, "join-session", session_code="NOPE42")
            error = ws.receive_json()
            assert error["event"] == "session-error"
            assert error["data"]["code"] == "SESSION_NOT_FOUND"
