# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification for outgoing JSON-RPC requests.

Every request made by :class:`batch_sender.async_client.RpcClient` carries an
``x-batch-sender-client`` header such as ``batch-sender/0.1.0`` so that node
operators can attribute traffic when rate limiting.
"""

import importlib.metadata as metadata

PACKAGE_NAME = "batch-sender"


class Metadata:
    CLIENT_HEADER = "x-batch-sender-client"

    @staticmethod
    def get_client_header_val():
        """Return ``batch-sender/<installed version>``.

        Raises:
            PackageNotFoundError: If the package is not installed.
        """
        version = metadata.version(PACKAGE_NAME)
        return f"batch-sender/{version}"
