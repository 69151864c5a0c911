# Import order matters: FK targets first so metadata resolves cleanly.
from travelbot.models.user import User  # noqa: F401
from travelbot.models.destination import Destination  # noqa: F401
from travelbot.models.category import PropertyCategory  # noqa: F401
from travelbot.models.amenity import Amenity, property_amenities  # noqa: F401
from travelbot.models.property import Property  # noqa: F401
from travelbot.models.preference_profile import PreferenceProfileRecord  # noqa: F401
from travelbot.models.query_embedding import QueryEmbedding  # noqa: F401
