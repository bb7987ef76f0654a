#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"
PRESENTATION_MIME_TYPE = "application/vnd.google-apps.presentation"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
PDF_MIME_TYPE = "application/pdf"

# Google Workspace documents have no binary content, they are exported
MIME_TYPES_TO_EXPORT = {
    DOCUMENT_MIME_TYPE: "text/plain",
    PRESENTATION_MIME_TYPE: "text/plain",
    SPREADSHEET_MIME_TYPE: "text/csv",
}

MIME_TYPES_TO_DOWNLOAD = ["text/plain", "text/markdown", "text/csv"]


def get_mime_types_to_sync(pdf_enabled=False):
    mime_types = [*MIME_TYPES_TO_EXPORT.keys(), *MIME_TYPES_TO_DOWNLOAD]
    if pdf_enabled:
        mime_types.append(PDF_MIME_TYPE)
    mime_types.append(FOLDER_MIME_TYPE)
    return mime_types


def is_folder(mime_type):
    return mime_type == FOLDER_MIME_TYPE
