"""Low-level connection utilities.
"""
from dbclient.utils.connection_utils import check_connection as check_connection
from dbclient.utils.connection_utils import create_url_from_options as create_url_from_options
from dbclient.utils.connection_utils import dispose_all_engines as dispose_all_engines
from dbclient.utils.connection_utils import get_engine_for_options as get_engine_for_options
