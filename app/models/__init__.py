from .base import Base  # noqa: F401
from .profile import Profile  # noqa: F401
from .message import Message, TypingStatus  # noqa: F401
from .notification import Notification  # noqa: F401
from .channel import ChannelMember  # noqa: F401
