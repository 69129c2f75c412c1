# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
TON Co-Signer examples.

- cosign.py: A complete 2-of-3 co-signing round with freshly generated phrases
- common.py: Shared configuration read from the environment

Run them as modules::

    python -m examples.cosign
"""
