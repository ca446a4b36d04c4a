import pytest

from tidymarks import create_app
from tidymarks.config import TestConfig
from tidymarks.services.session import SESSION_EXTENSION

SAMPLE_EXPORT = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
  <DT><H3 ADD_DATE="1700000000" LAST_MODIFIED="1700000100">Work</H3>
  <DL><p>
    <DT><A HREF="http://x.com/" ADD_DATE="1700000001">A</A>
    <DT><A HREF="http://x.com">B</A>
  </DL><p>
  <DT><H3>Recipes</H3>
  <DL><p>
    <DT><A HREF="https://food.example/pasta">Pasta</A>
  </DL><p>
  <DT><H3>Misc</H3>
  <DL><p>
    <DT><H3>recipe</H3>
    <DL><p>
    </DL><p>
  </DL><p>
  <DT><A HREF="https://root.example/" ICON="data:image/png;base64,AAAA">Root Link</A>
</DL><p>
"""


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    app.extensions[SESSION_EXTENSION].clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sample_export():
    return SAMPLE_EXPORT
