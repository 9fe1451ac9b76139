import threading
import unittest

from aurora.services import sale_events


class SaleEventsTests(unittest.TestCase):
    def setUp(self):
        sale_events.clear()

    def tearDown(self):
        sale_events.clear()

    def test_publish_reaches_only_that_sale(self):
        received_1, received_2 = [], []
        sale_events.subscribe(1, received_1.append)
        sale_events.subscribe(2, received_2.append)

        delivered = sale_events.publish(1, {"sale_id": 1, "status": "COMPLETED"})

        self.assertEqual(delivered, 1)
        self.assertEqual(received_1, [{"sale_id": 1, "status": "COMPLETED"}])
        self.assertEqual(received_2, [])

    def test_publish_without_subscribers(self):
        self.assertEqual(sale_events.publish(99, {"status": "COMPLETED"}), 0)

    def test_close_is_idempotent(self):
        received = []
        subscription = sale_events.subscribe(1, received.append)
        self.assertEqual(sale_events.subscriber_count(1), 1)

        subscription.close()
        subscription.close()
        sale_events.publish(1, {"status": "COMPLETED"})

        self.assertEqual(sale_events.subscriber_count(1), 0)
        self.assertEqual(received, [])

    def test_context_manager_unsubscribes(self):
        with sale_events.subscribe(7, lambda payload: None):
            self.assertEqual(sale_events.subscriber_count(7), 1)
        self.assertEqual(sale_events.subscriber_count(7), 0)

    def test_callback_may_close_its_own_subscription(self):
        received = []
        holder = {}

        def once(payload):
            received.append(payload)
            holder["subscription"].close()

        holder["subscription"] = sale_events.subscribe(3, once)
        sale_events.publish(3, {"n": 1})
        sale_events.publish(3, {"n": 2})

        self.assertEqual(received, [{"n": 1}])

    def test_concurrent_subscribers(self):
        received = []
        lock = threading.Lock()

        def record(payload):
            with lock:
                received.append(payload["n"])

        subscriptions = []
        threads = [
            threading.Thread(target=lambda: subscriptions.append(sale_events.subscribe(5, record)))
            for _ in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sale_events.publish(5, {"n": 1}), 20)
        self.assertEqual(len(received), 20)

        for subscription in subscriptions:
            subscription.close()
        self.assertEqual(sale_events.subscriber_count(5), 0)


if __name__ == "__main__":
    unittest.main()
