from app.crud.base import CRUDBase, coerce_uuid
from app.crud.crud_extraction import extraction
from app.crud.crud_source import (
    aget_shopify_credential,
    aget_source,
    astamp_shopify_connection,
)
from app.crud.crud_dataset_template import (
    aget_dataset_template,
    aget_dataset_template_by_key,
)
from app.crud.crud_shopify_log import acreate_shopify_log
