"""Sample jobs shown to visitors who have not signed in yet."""

from jobtracker.schemas.job import JobRecord

DEMO_JOBS: tuple[JobRecord, ...] = (
    JobRecord(
        id="demo-1",
        position="Senior Software Engineer",
        company="TechCorp Inc.",
        location="San Francisco, CA",
        status="interviewing",
        salary_min=120000,
        salary_max=150000,
        date_applied="2024-01-15",
        date_saved="2024-01-15",
        rating=4,
        notes="Great company culture, exciting projects",
    ),
    JobRecord(
        id="demo-2",
        position="Frontend Developer",
        company="StartupXYZ",
        location="Remote",
        status="applied",
        salary_min=80000,
        salary_max=100000,
        date_applied="2024-01-10",
        date_saved="2024-01-10",
        rating=3,
        notes="Remote-first company, good benefits",
    ),
    JobRecord(
        id="demo-3",
        position="Full Stack Developer",
        company="Innovation Labs",
        location="New York, NY",
        status="accepted",
        salary_min=100000,
        salary_max=130000,
        date_applied="2024-01-05",
        date_saved="2024-01-05",
        rating=5,
        notes="Dream job! Great team and challenging work",
    ),
)
