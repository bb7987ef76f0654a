#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Google Drive connector.

The sync engine is split in activities (full_sync, incremental_sync,
garbage_collector, webhooks) that share a `GoogleDriveContext`, and
workflows chaining them together (workflows).
"""
