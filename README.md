# sancho

A Discord bot in character: it rolls dice, keeps reminders, runs image
filters on pictures people post, and can be driven from an operator console
on standard input.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running

Start the bot from the directory that holds its data files:

```
sancho
```

Option:

- `--secrets PATH`: the secrets file to read (default `secrets.txt`).

The secrets file (read by `sancho.bot.load_secrets`) holds one value per
line, in this order:

1. the bot token
2. the default channel: console `say` commands post there, messages there
   are echoed to the console, and crash reports go there
3. to 8. user ids the bot treats in particular ways (for `Secrets` these are
   `mattager_id`, `whoops_id`, `my_id`, `femmo_id`, `greed_id`, `ender_id`)
9. a space-separated list of channel ids where apology reactions are off

If the file is missing or has fewer than nine lines, `sancho` logs the
problem and exits with status 1. It also exits with status 1 if the gateway
connection thread stops. It stops cleanly on Ctrl-C, on SIGTERM, or after the
`gn` console command.

While running, the main loop checks about ten times a second for console
input, logs errors reported by command handlers, and delivers reminders that
have come due. If the user with id `femmo_id` has been offline for a further
24 hours, the user `greed_id` is told so by direct message.

## Chat commands

Messages starting with `.` are commands. A command may also be wrapped in
`(( ... ))`. Each command runs in its own thread.

| Command | Aliases | What it does |
| --- | --- | --- |
| `.help` | | replies with the contents of `help.md` |
| `.roll` | | `.roll 20` rolls 1 to 20; dice expressions such as `.roll 2d6+3` take operators `+ - * ^ _` (`_` raises the next value to the running total), evaluated left to right; editing the message re-rolls into the bot's earlier reply |
| `.bod` | | rolls 1 to 4 and posts `img/yujin.png` on a 4 (with the mention that followed `.bod`), `img/yujinDead.jpg` otherwise |
| `.nacho` | `badword`, `rye`, `ryeldhunt`, `pet`, `sanitize` | sends the first file in `img/` named after the command, with any extension |
| `.remind` | `remindme` | sets a reminder, e.g. `.remind me to stretch in 2h`, `.remind to call at 18:00 on 24/12`, `... every 1 day`, `... 3 times`, `... forever`; a leading `<@id>` addresses it to someone else |
| `.reminders` | | lists the reminders addressed to you |
| `.deremind` | `forget` | `.deremind 2` deletes the second reminder you set |
| `.settz` | | records your time zone, needed for `at`/`on` reminders; names without `/` become `Etc/` zones with `UTC` read as `GMT` (`UTC+2` becomes `Etc/GMT+2`) |
| `.lmd` | | puts the avatar of the mentioned user, the replied-to author, or yourself into `img/lmd.gif` |
| `.said` | `speechbubble` | cuts a speech bubble out of the attached or replied-to image using `img/mask.png` |
| `.sanchoball` | `8ball` | answers a question; the same question from the same user gets the same answer on the same day |
| `.yesod` | `jpeg`, `corru` | image filters on an attached, replied-to or linked image: heavy JPEG damage (`yesod` strongest), or a palette remap onto `img/obesk.png` (`corru`); animations come back as GIFs; tenor page links are followed, Discord CDN links are refused |
| `.limbusroll` | `skill`, `skillroll` | `<coins> <base power> <coin power> [sp]` coin-flip roll |

Besides commands, the bot answers a few phrases from particular users, counts
apologies from one of them (lines from `apologylines.txt`, count kept under
`endercount` in `randombullshit.ini`), greets a server it has just joined,
and shows its home server's member count as its status.

## Console commands

Lines typed on standard input are handled by `sancho.cli.Console.dispatch`:

- `say <text>`: send text to the current echo channel (`\n` becomes a newline)
- `sayr <message id> <text>`: reply to a message in the echo channel
- `sayi <file> <word>` or `sayi <file> <message id> <text>`: send an image
  from `img/`; when more than one word follows the file name, the first is
  taken as the id of the message to reply to
- `chan <channel id>`: change the echo channel
- `listen <channel id>`: print messages from that channel; `listen` alone stops
- `channels <server id>`: list a server's channels
- `gn`: post `img/goodnight.png` with a good-night message and shut down

Errors from console commands are logged and the bot keeps running.

## Data files

All in the working directory:

- `timers.txt`: stored reminders, one per line (created at start if missing).
  Pending reminders are loaded when the bot connects; ones that came due
  while it was down are sent late, and repeating ones are rescheduled.
- `timezones.txt`: `<user id> <zone>` lines appended by `.settz`; the last
  line for a user wins.
- `help.md`, `apologylines.txt`, `randombullshit.ini`.
- `img/`: `goodnight.png`, `yujin.png`, `yujinDead.jpg`, `lmd.gif`,
  `mask.png`, `obesk.png` and the images sent by name.

## Using the pieces

- `sancho.dice.compose_roll`, `sancho.limbus.format_limbus_roll` and
  `sancho.remindcmd.parse_reminder` work on plain strings and accept a random
  generator or a fixed time.
- `sancho.imaging.jpegify`, `corru`, `speech_bubble` and `lament` take and
  return image bytes.
- `sancho.instance.Session` is an in-memory stand-in for the chat session that
  records everything sent; `sancho.session.DiscordSession` is the real one.
- `sancho.reminders.ReminderManager` keeps reminders in memory and in the
  timers file.

## Limits

- `Console.get_pfp` saves a user's avatar to `img/<id>.png`, but no console
  line runs it.
- The gateway connection does not resume sessions: after a drop it waits five
  seconds, reconnects and identifies afresh.
- The good-night message always goes to a fixed channel, not the echo channel.