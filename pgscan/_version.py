
# Version data for the pgscan package. The pep440 string is derived from the
# raw fields so that post and rc releases are tagged consistently.

def get_versions():
    return tag_version_data(raw_versions())

def raw_versions():
    return {
        "codename": "Ember",
        "version": "0.1.0",
        "post": "0",
        "rc": "0",
    }


def tag_version_data(version_data):
    current_version = version_data["version"]
    post = int(version_data.get("post", 0))
    rc = int(version_data.get("rc", 0))
    if post and rc:
        raise RuntimeError("Can not have both post and rc version.")

    if post:
        version_data["pep440"] = "%s.post%s" % (current_version, post)
    elif rc:
        version_data["pep440"] = "%src%s" % (current_version, rc)
    else:
        version_data["pep440"] = current_version

    return version_data
