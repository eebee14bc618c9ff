"""
batch-sender examples.

- send_batch.py: send one amount to several recipients and print the report
- common.py: environment driven configuration shared by the examples

Run with::

    python -m examples.send_batch
"""
