from .git import GitInfo, detect_changed_files, detect_project_root, is_safe_directory

__all__ = ["GitInfo", "detect_changed_files", "detect_project_root", "is_safe_directory"]
