"""
Message Queue — Delayed hand-off of notification jobs to the senders.

- The queue publisher enqueues each new job with a delay until its send time
- The queue poll loop receives due messages and submits them for delivery
- Supports AWS SQS (production) and an in-memory queue (dev, tests)
"""
