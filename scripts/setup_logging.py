import logging, time, sys, os


def setup_logging(log_dir=None, level=logging.INFO):
    """Logs to stdout and to a timestamped file

    The file goes in log_dir if given, otherwise in a logs/ directory next
    to the running script.
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    logpath = None
    if log_dir is not None or hasattr(sys.modules["__main__"], "__file__"):
        main_body = "template_induction"
        if hasattr(sys.modules["__main__"], "__file__"):
            mainpath = os.path.abspath(sys.modules["__main__"].__file__)
            main_body, _ = os.path.splitext(os.path.basename(mainpath))
            if log_dir is None:
                log_dir = os.path.join(os.path.dirname(mainpath), "logs")

        timestr = time.strftime("%Y%m%d-%H%M%S")
        if not os.path.isdir(log_dir):
            os.makedirs(log_dir)
        logpath = os.path.join(log_dir, "{}_{}.log".format(main_body, timestr))
        handlers.append(logging.FileHandler(logpath))

    # Drop handlers installed by anything imported before us, or the file
    # handler above never receives records
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )
    log = logging.getLogger(__name__)
    if logpath:
        log.info("Setting up logger at {}".format(logpath))
    else:
        log.warning(
            "No main file to build a log relative to. Proceeding without a log file."
        )

    return log
