"""Services for the notification delivery pipeline.

Services:
- queue.py: Producer contract, retry policy, queue status and cleanup
- devices.py: Push device registry (subscribe/unsubscribe)
"""
