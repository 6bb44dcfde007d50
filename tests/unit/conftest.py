"""
Shared fixtures: Google Voice takeout documents written inline.

The samples follow the markup of a real Takeout "Voice/Calls" folder with
names and numbers replaced.
"""

from pathlib import Path
from typing import Dict

import pytest

XHTML_PREAMBLE = """<?xml version="1.0" ?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Strict//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-strict.dtd">
"""

VOICEMAIL_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
<title>Voicemail from Sleve Mcdichael</title></head>
<body>
<div class="haudio">
<span class="fn">Voicemail from Sleve Mcdichael</span>
<div class="contributor vcard">Voicemail from
<a class="tel" href="tel:+11111111111"><span class="fn">Sleve Mcdichael</span></a></div>
<abbr class="published" title="2018-07-23T09:23:31.000-07:00">Jul 23, 2018, 9:23:31 AM Pacific Time</abbr>
<br />
<span class="description"><span class="full-text">Hi Peter, this is Sleve Mcdichael. I'm the manager. I believe you have internet. I just have some quick questions for you. Thank you.</span></span>
<br />
<audio controls="controls" src="Sleve Mcdichael - Voicemail - 2018-07-23T16_23_31Z.mp3"><a rel="enclosure" href="Sleve Mcdichael - Voicemail - 2018-07-23T16_23_31Z.mp3">Audio</a></audio>
<br />
<abbr class="duration" title="PT18S">(00:00:18)</abbr>
<div class="tags">Labels:
<a rel="tag" href="http://www.google.com/voice#inbox">Inbox</a>,
<a rel="tag" href="http://www.google.com/voice#voicemail">Voicemail</a></div>
</div>
</body>
</html>
"""

SMS_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
<title>Me to Tony Smehrik</title></head>
<body>
<div class="hChatLog hfeed">
<div class="message"><abbr class="dt" title="2022-06-30T18:06:39.894-07:00">Jun 30, 2022, 6:06:39 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q>doing just fine. I moved to Florida</q>
</div>
<div class="message"><abbr class="dt" title="2022-06-30T18:06:46.025-07:00">Jun 30, 2022, 6:06:46 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q>MMS Sent</q>
<div><img src="Tony Smehrik - Text - 2022-07-01T01_06_39Z-2-1" alt="Image MMS Attachment" /></div>
</div>
<div class="message"><abbr class="dt" title="2022-06-30T18:07:09.468-07:00">Jun 30, 2022, 6:07:09 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+333"><span class="fn">Tony Smehrik</span></a></cite>:
<q>💚</q>
</div>
<div class="message"><abbr class="dt" title="2022-06-30T18:07:24.594-07:00">Jun 30, 2022, 6:07:24 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+333"><span class="fn">Tony Smehrik</span></a></cite>:
<q>all that space</q>
</div>
<div class="message"><abbr class="dt" title="2022-06-30T18:07:28.190-07:00">Jun 30, 2022, 6:07:28 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+333"><span class="fn">Tony Smehrik</span></a></cite>:
<q>Thank you 🙏</q>
</div>
</div>
</body>
</html>
"""

GROUP_MMS_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
<title>Group Conversation</title></head>
<body>
<div class="hChatLog hfeed">
<div class="participants">Group conversation with:
<cite class="sender vcard"><a class="tel" href="tel:+8888"><span class="fn">Mike Truk</span></a></cite>,
<cite class="sender vcard"><a class="tel" href="tel:+333"><span class="fn">Tony Smehrik</span></a></cite>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:48:32.703-07:00">May 22, 2024, 9:48:32 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+8888"><span class="fn">Mike Truk</span></a></cite>:
<q></q>
<div><img src="Group Conversation - 2024-05-23T04_48_32Z-1-1" alt="Image MMS Attachment" /></div>
<div><img src="Group Conversation - 2024-05-23T04_48_32Z-1-2" alt="Image MMS Attachment" /></div>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:49:25.704-07:00">May 22, 2024, 9:49:25 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q></q>
<div><img src="Group Conversation - 2024-05-23T04_48_32Z-2-1" alt="Image MMS Attachment" /></div>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:49:33.853-07:00">May 22, 2024, 9:49:33 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q></q>
<div><img src="Group Conversation - 2024-05-23T04_48_32Z-3-1" alt="Image MMS Attachment" /></div>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:50:42.475-07:00">May 22, 2024, 9:50:42 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+8888"><span class="fn">Mike Truk</span></a></cite>:
<q>Hahahaha</q>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:51:10.663-07:00">May 22, 2024, 9:51:10 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+8888"><span class="fn">Mike Truk</span></a></cite>:
<q>Maybe this is your sign to get a hornet-skyscraper Peter</q>
</div>
<div class="message"><abbr class="dt" title="2024-05-22T21:54:15.125-07:00">May 22, 2024, 9:54:15 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+333"><span class="fn">Tony Smehrik</span></a></cite>:
<q>Hahaha I love all of these</q>
</div>
</div>
</body>
</html>
"""

MISSED_CALL_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><meta http-equiv="Content-Type" content="text/html; charset=utf-8" />
<title>Missed call from Dwigt Rortugal</title></head>
<body>
<div class="haudio">
<span class="fn">Missed call from Dwigt Rortugal</span>
<div class="contributor vcard">Missed call from
<a class="tel" href="tel:+66666"><span class="fn">Dwigt Rortugal</span></a></div>
<abbr class="published" title="2009-09-17T17:26:41.000-07:00">Sep 17, 2009, 5:26:41 PM Pacific Time</abbr>
<div class="tags">Labels:
<a rel="tag" href="http://www.google.com/voice#missed">Missed</a></div>
</div>
</body>
</html>
"""

PLACED_CALL_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Placed call to Dwigt Rortugal</title></head>
<body>
<div class="haudio">
<span class="fn">Placed call to Dwigt Rortugal</span>
<div class="contributor vcard">Placed call to
<a class="tel" href="tel:+66666"><span class="fn">Dwigt Rortugal</span></a></div>
<abbr class="published" title="2010-01-02T08:00:00.000-08:00">Jan 2, 2010, 8:00:00 AM Pacific Time</abbr>
<abbr class="duration" title="PT1M5S">(00:01:05)</abbr>
<div class="tags">Labels:
<a rel="tag" href="http://www.google.com/voice#placed">Placed</a></div>
</div>
</body>
</html>
"""

TITLE_ONLY_RECIPIENT_HTML = XHTML_PREAMBLE + """<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Me to Sillio Sanford</title></head>
<body>
<div class="hChatLog hfeed">
<div class="message"><abbr class="dt" title="2023-08-21T18:02:19.924-07:00">Aug 21, 2023, 6:02:19 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q>How are you?</q>
</div>
<div class="message"><abbr class="dt" title="2023-08-21T17:52:44.104-07:00">Aug 21, 2023, 5:52:44 PM Pacific Time</abbr>:
<cite class="sender vcard"><a class="tel" href="tel:+2222"><abbr class="fn" title="">Me</abbr></a></cite>:
<q>Hey ya</q>
</div>
</div>
</body>
</html>
"""

SAMPLES: Dict[str, str] = {
    "voicemail": VOICEMAIL_HTML,
    "sms": SMS_HTML,
    "group_mms": GROUP_MMS_HTML,
    "missed_call": MISSED_CALL_HTML,
    "placed_call": PLACED_CALL_HTML,
    "title_only_recipient": TITLE_ONLY_RECIPIENT_HTML,
}

EXPORT_LAYOUT = {
    "Calls/Sleve Mcdichael - Voicemail - 2018-07-23T16_23_31Z.html": VOICEMAIL_HTML,
    "Calls/Tony Smehrik - Text - 2022-07-01T01_06_39Z.html": SMS_HTML,
    "Calls/Group Conversation - 2024-05-23T04_48_32Z.html": GROUP_MMS_HTML,
    "Calls/Dwigt Rortugal - Missed - 2009-09-18T00_26_41Z.html": MISSED_CALL_HTML,
}

ATTACHMENTS = {
    "Calls/Tony Smehrik - Text - 2022-07-01T01_06_39Z-2-1.jpg": b"\xff\xd8sms-photo",
    "Calls/Group Conversation - 2024-05-23T04_48_32Z-1-1.jpg": b"\xff\xd8group-1-1",
    "Calls/Group Conversation - 2024-05-23T04_48_32Z-1-2.jpg": b"\xff\xd8group-1-2",
    "Calls/Group Conversation - 2024-05-23T04_48_32Z-2-1.gif": b"GIF89a-group-2-1",
}


@pytest.fixture
def takeout_html() -> Dict[str, str]:
    """Sample documents keyed by kind."""
    return dict(SAMPLES)


@pytest.fixture
def export_dir(tmp_path) -> Path:
    """A small Takeout export: four documents and the attachments they reference."""
    root = tmp_path / "Takeout" / "Voice"
    for relative, html in EXPORT_LAYOUT.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
    for relative, content in ATTACHMENTS.items():
        (root / relative).write_bytes(content)
    return root
