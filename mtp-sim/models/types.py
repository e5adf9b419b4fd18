from enum import Enum, IntEnum

class NodeClass(Enum):
    FOLDER = "Folder"
    OBJECT = "Object"
    VARIABLE = "Variable"

class AccessMode(IntEnum):
    NONE = 0
    READ = 1
    WRITE = 2
    READ_WRITE = 3
