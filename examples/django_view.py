import datetime
from django.http import HttpResponse
from zipflow import ZipWriter


def report_rows(queryset):
    yield b"id;title;created\n"
    for obj in queryset.iterator():
        yield ("%d;%s;%s\n" % (obj.pk, obj.title, obj.created)).encode("utf-8")


def export_reports(request, queryset):
    """
    HttpResponse is file-like, so archive is written straight into it
    """
    response = HttpResponse(content_type="application/zip")
    response['Content-Disposition'] = 'attachment; filename="reports.zip"'
    today = datetime.datetime.now()
    with ZipWriter(response, close_sink=False) as zw:
        # utf-8 names are flagged in headers, so unzip shows them correctly
        zw.add_file("raporty/zestawienie-%s.csv" % today.strftime("%Y-%m-%d"),
                    report_rows(queryset), mtime=today)
        with open("/srv/static/regulamin.pdf", "rb") as fh:
            zw.add_file("raporty/regulamin.pdf", iter(lambda: fh.read(32768), b""),
                        mtime=datetime.datetime(2023, 1, 1))
    return response
