#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import warnings

from elasticsearch.exceptions import GeneralAvailabilityWarning

from dust_connectors.es.client import ESClient  # NOQA
from dust_connectors.es.document import ESDocument, InvalidDocumentSourceError  # NOQA
from dust_connectors.es.index import DocumentNotFoundError, ESIndex  # NOQA

warnings.filterwarnings("ignore", category=GeneralAvailabilityWarning)

TIMESTAMP_FIELD = "_timestamp"
