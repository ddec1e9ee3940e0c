from .tree import TreeNode, TreeArena, position_from_path, path_from_position
from .forest import TreeForest, FaceConnection, build_root_adjacency, all_faces
from .neighbors import NeighborLocator, NeighborInfo, face_directions, all_directions
