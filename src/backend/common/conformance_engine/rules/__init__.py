from .common_core_4000 import COMMON_CORE_4000
from .feed_core_2000 import FEED_CORE_2000
from .feed_core_4001 import FEED_CORE_4001
from .entry_core_4005 import ENTRY_CORE_4005
from .error_core_4602 import ERROR_CORE_4602
from .svcdoc_core_4003 import SVCDOC_CORE_4003
from .value_core_2000 import VALUE_CORE_2000
from .metadata_core_4001 import METADATA_CORE_4001
