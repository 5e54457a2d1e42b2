__app_name__ = "StoryMine"
__version__ = "0.1.0"
