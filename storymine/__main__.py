from storymine.ui.cli import app

app()
